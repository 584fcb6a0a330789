"""
Envelope encryption façade.

Builds a CryptoEngine and a master-key provider from configuration properties
and exposes string-oriented convenience entry points. `None` passed in always
comes back out as `None`.

Example:
    util = CipherUtil.new_instance()
    token = util.encrypt("Hello World")
    assert util.decrypt(token) == b"Hello World"
"""

import logging
from threading import Lock
from typing import Mapping, Optional

from envcrypt.config import CipherConfig
from envcrypt.crypto import engine as crypto_engine
from envcrypt.crypto import wire
from envcrypt.crypto.engine import CryptoEngine
from envcrypt.kms.google_kms import GoogleCipher
from envcrypt.kms.local_kms import LocalCipher
from envcrypt.kms.provider import CipherProvider, ProviderType

logger = logging.getLogger(__name__)


class CipherUtil:
    def __init__(
        self,
        provider_type: ProviderType | str | None = None,
        properties: Optional[Mapping[str, str]] = None,
        kms_client=None
    ):
        self.properties = dict(properties or {})
        if provider_type is None:
            provider_type = self.properties.get("provider", ProviderType.LOCAL.value)
        provider_type = ProviderType(provider_type.upper() if isinstance(provider_type, str) else provider_type)

        engine = CryptoEngine(CipherConfig.from_properties(self.properties))
        if provider_type == ProviderType.GOOGLE_KMS:
            self.provider: CipherProvider = GoogleCipher(engine, self.properties, kms_client=kms_client)
        else:
            self.provider = LocalCipher(engine, self.properties)

    @classmethod
    def new_instance(
        cls,
        provider_type: ProviderType | str | None = None,
        properties: Optional[Mapping[str, str]] = None
    ) -> "CipherUtil":
        """Create a new instance. Without properties, a local provider with a generated master key."""
        if properties is None:
            properties = {"masterKey": cls.generate_new_key(CipherConfig().algorithm)}
        return cls(provider_type, properties)

    @classmethod
    def get_instance(
        cls,
        provider_type: ProviderType | str | None = None,
        properties: Optional[Mapping[str, str]] = None
    ) -> "CipherUtil":
        """Get the process-wide instance, creating it on the first call.

        Arguments are only used by the call that creates the instance.
        """
        global _instance
        with _instance_lock:
            if _instance is None:
                _instance = cls.new_instance(provider_type, properties)
                logger.info("Shared cipher instance created (%s)", _instance.provider_type().name)
            return _instance

    @classmethod
    def reset_instance(cls):
        """Drop the process-wide instance."""
        global _instance
        with _instance_lock:
            _instance = None

    def encrypt(self, plaintext: str | bytes | None) -> str | None:
        """Encrypt text (UTF-8) or bytes into the `{key}ciphertext` wire format."""
        if plaintext is None:
            return None
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')
        return wire.render(self.provider.encrypt(plaintext))

    def decrypt(self, cipher_text: str | None) -> bytes | None:
        if cipher_text is None:
            return None
        return self.provider.decrypt(wire.parse(cipher_text))

    def hash(self, plaintext: str | None, salt: str | None) -> str | None:
        if plaintext is None or salt is None:
            return None
        return self.provider.hash(plaintext, salt)

    def provider_type(self) -> ProviderType:
        return self.provider.provider_type()

    def master_key_info(self) -> str | None:
        return self.provider.master_key_info()

    @staticmethod
    def generate_new_key(algorithm: str = "AES") -> str:
        """Generate a printable key material string, e.g. for a new master key."""
        return crypto_engine.generate_key(algorithm).to_printable()

    @staticmethod
    def generate_new_salt() -> str:
        """Generate a random 16-byte salt, base64url encoded."""
        return crypto_engine.generate_salt()


# Process-wide instance (created by CipherUtil.get_instance)
_instance: Optional[CipherUtil] = None
_instance_lock = Lock()
