import binascii
import logging
from typing import Mapping

from envcrypt.cache.data_key_cache import DataKeyCache
from envcrypt.config import CacheConfig
from envcrypt.crypto.engine import CryptoEngine, EncryptedEnvelope
from envcrypt.crypto.keys import KeyMaterial, NONCE_SIZE, b64url_decode, b64url_encode
from envcrypt.crypto.wire import WrappedCipherText
from envcrypt.errors import CipherException, CryptoFailure, ProviderInitFailure
from envcrypt.kms.provider import CipherProvider, ProviderType, dump_master_key_info

logger = logging.getLogger(__name__)


class LocalCipher(CipherProvider):
    """In-process master key provider.

    The master key comes from the `masterKey` property (printable key
    material) and is held for the provider's lifetime. Data keys are wrapped
    with AES-GCM under the master key using a fresh wrapping nonce per call;
    the wrapped key is stored as b64url(nonce || ciphertext).
    """

    def __init__(self, engine: CryptoEngine, properties: Mapping[str, str]):
        self.engine = engine
        master_key = properties.get("masterKey")
        if not master_key:
            raise ProviderInitFailure("Property 'masterKey' is required for the local provider")
        try:
            self.master_key = KeyMaterial.from_printable(master_key)
        except CipherException as e:
            raise ProviderInitFailure("Invalid 'masterKey' property") from e
        if len(self.master_key.data_key) not in (16, 24, 32):
            raise ProviderInitFailure(
                f"Master key must be 16, 24 or 32 bytes, got {len(self.master_key.data_key)}"
            )

        self.cache = DataKeyCache(CacheConfig.from_properties(properties), self._unwrap_data_key)
        logger.info("Local cipher provider initialized")

    def _wrap_data_key(self, data_key: KeyMaterial) -> str:
        wrapping_key = KeyMaterial(self.master_key.data_key, self.engine.generate_key().nonce)
        wrapped = self.engine.encrypt(data_key.to_bytes(), wrapping_key)
        return b64url_encode(wrapping_key.nonce + wrapped.ciphertext)

    def _unwrap_data_key(self, wrapped_data_key: str) -> KeyMaterial:
        try:
            blob = b64url_decode(wrapped_data_key)
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure("Decryption failed") from e
        if len(blob) <= NONCE_SIZE:
            raise CryptoFailure("Decryption failed")

        wrapping_key = KeyMaterial(self.master_key.data_key, blob[:NONCE_SIZE])
        raw = self.engine.decrypt(EncryptedEnvelope(wrapping_key, blob[NONCE_SIZE:]))
        return KeyMaterial.from_bytes(raw)

    def encrypt(self, plaintext: bytes) -> WrappedCipherText:
        envelope = self.engine.encrypt(plaintext)
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
        return ProviderType.LOCAL

    def master_key_info(self) -> str | None:
        return dump_master_key_info({"provider": self.provider_type().name})
