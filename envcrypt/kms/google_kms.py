import binascii
import logging
from threading import Lock
from typing import Callable, Mapping

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import kms
from google.oauth2 import service_account

from envcrypt.cache.data_key_cache import DataKeyCache
from envcrypt.config import CacheConfig, GoogleKmsConfig
from envcrypt.crypto.engine import CryptoEngine, EncryptedEnvelope
from envcrypt.crypto.keys import KeyMaterial, b64url_decode, b64url_encode
from envcrypt.crypto.wire import WrappedCipherText
from envcrypt.errors import CryptoFailure, ProviderInitFailure, RemoteProviderFailure
from envcrypt.kms.provider import CipherProvider, ProviderType, dump_master_key_info

logger = logging.getLogger(__name__)

REQUIRED_PROPERTIES = ("projectId", "locationId", "keyRingId", "keyId")


class LazyClient:
    """Creates a client on first use, exactly once, even under concurrent access."""

    def __init__(self, factory: Callable[[], object]):
        self.factory = factory
        self._client = None
        self._lock = Lock()

    @property
    def ready(self) -> bool:
        return self._client is not None

    def get(self):
        client = self._client
        if client is None:
            with self._lock:
                if self._client is None:
                    self._client = self.factory()
                client = self._client
        return client


def create_kms_client(config: GoogleKmsConfig) -> kms.KeyManagementServiceClient:
    """Build a KMS client from a service account file, or ambient credentials."""
    try:
        if config.credential_file:
            credentials = service_account.Credentials.from_service_account_file(config.credential_file)
            return kms.KeyManagementServiceClient(credentials=credentials)
        return kms.KeyManagementServiceClient()
    except (GoogleAuthError, GoogleAPIError, OSError, ValueError) as e:
        logger.error("Unable to create Google KMS client: %s", e)
        raise ProviderInitFailure("Unable to create Google KMS client") from e


class GoogleCipher(CipherProvider):
    """Google Cloud KMS provider.

    Data keys are wrapped by the remote Encrypt/Decrypt APIs of one crypto key;
    the master key never leaves KMS. The client is created lazily unless one
    is injected.
    """

    def __init__(self, engine: CryptoEngine, properties: Mapping[str, str], kms_client=None):
        self.engine = engine
        self.kms_config = GoogleKmsConfig.from_properties(properties)
        for name in REQUIRED_PROPERTIES:
            if not properties.get(name):
                raise ProviderInitFailure(f"Property '{name}' is required for the Google KMS provider")
        self.key_name = self.kms_config.crypto_key_name()
        if kms_client is not None:
            self.client = LazyClient(lambda: kms_client)
        else:
            self.client = LazyClient(lambda: create_kms_client(self.kms_config))
        self.cache = DataKeyCache(CacheConfig.from_properties(properties), self._unwrap_data_key)
        self._data_key = None
        logger.info("Google KMS cipher provider initialized for %s", self.key_name)

    def set_data_key(self, data_key: KeyMaterial | None):
        """Pin the data key used by `encrypt`. For tests only: reuses the nonce."""
        self._data_key = data_key

    def _wrap_data_key(self, data_key: KeyMaterial) -> str:
        try:
            resp = self.client.get().encrypt(request={
                "name": self.key_name,
                "plaintext": data_key.to_printable().encode('utf-8'),
            })
        except (GoogleAPIError, GoogleAuthError) as e:
            logger.error("Google KMS encrypt failed: %s", e)
            raise RemoteProviderFailure("Google KMS encrypt failed") from e
        return b64url_encode(resp.ciphertext)

    def _unwrap_data_key(self, wrapped_data_key: str) -> KeyMaterial:
        try:
            blob = b64url_decode(wrapped_data_key)
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure("Decryption failed") from e
        try:
            resp = self.client.get().decrypt(request={
                "name": self.key_name,
                "ciphertext": blob,
            })
        except (GoogleAPIError, GoogleAuthError) as e:
            logger.error("Google KMS decrypt failed: %s", e)
            raise RemoteProviderFailure("Google KMS decrypt failed") from e
        try:
            return KeyMaterial.from_printable(bytes(resp.plaintext).decode('utf-8'))
        except UnicodeDecodeError as e:
            raise CryptoFailure("Decryption failed") from e

    def encrypt(self, plaintext: bytes) -> WrappedCipherText:
        if self._data_key is None:
            envelope = self.engine.encrypt(plaintext)
        else:
            envelope = self.engine.encrypt(plaintext, self._data_key)
        return WrappedCipherText(self._wrap_data_key(envelope.key), b64url_encode(envelope.ciphertext))

    def decrypt(self, wrapped: WrappedCipherText) -> bytes:
        data_key = self.cache.get(wrapped.wrapped_data_key)
        try:
            ciphertext = b64url_decode(wrapped.ciphertext)
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure("Decryption failed") from e
        return self.engine.decrypt(EncryptedEnvelope(data_key, ciphertext))

    def hash(self, plaintext: str, salt: str) -> str:
        return self.engine.hash(plaintext, salt)

    def provider_type(self) -> ProviderType:
        return ProviderType.GOOGLE_KMS

    def master_key_info(self) -> str | None:
        return dump_master_key_info({
            "provider": self.provider_type().name,
            "projectId": self.kms_config.project_id,
            "keyId": self.kms_config.key_id,
            "keyRingId": self.kms_config.key_ring_id,
            "locationId": self.kms_config.location_id,
        })
