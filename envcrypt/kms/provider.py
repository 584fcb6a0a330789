import json
import logging
from abc import ABC, abstractmethod
from enum import Enum

from envcrypt.crypto.wire import WrappedCipherText

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    LOCAL = "LOCAL"
    GOOGLE_KMS = "GOOGLE_KMS"


class CipherProvider(ABC):
    """Abstract master-key provider interface for envelope encryption."""

    @abstractmethod
    def encrypt(self, plaintext: bytes) -> WrappedCipherText:
        """Encrypt under a fresh data key and return it with the wrapped key."""

    @abstractmethod
    def decrypt(self, wrapped: WrappedCipherText) -> bytes:
        """Unwrap the data key (through the cache) and decrypt."""

    @abstractmethod
    def hash(self, plaintext: str, salt: str) -> str:
        """Salted one-way digest of `plaintext`."""

    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type."""

    @abstractmethod
    def master_key_info(self) -> str | None:
        """Return non-sensitive master key identity as JSON."""


def dump_master_key_info(info: dict) -> str | None:
    """Serialize master key info; a failure here is logged, not raised."""
    try:
        return json.dumps(info)
    except (TypeError, ValueError) as e:
        logger.warning("Unable to serialize master key info: %s", e)
        return None
