import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import dotenv_values
from google.cloud import kms

# Environment variables override properties file values, e.g.
# ENVCRYPT_MASTER_KEY -> masterKey, ENVCRYPT_KEY_RING_ID -> keyRingId
ENV_PREFIX = os.getenv('ENVCRYPT_ENV_PREFIX', 'ENVCRYPT_')

PROPERTY_NAMES = (
    "provider",
    "algorithm",
    "transformation",
    "hashAlgorithm",
    "initialCapacity",
    "concurrencyLevel",
    "maximumSize",
    "expireDuration",
    "masterKey",
    "projectId",
    "locationId",
    "keyRingId",
    "keyId",
    "credentialFile",
)


def env_name(property_name: str) -> str:
    snake = re.sub(r'(?<!^)(?=[A-Z])', '_', property_name).upper()
    return ENV_PREFIX + snake


def load_properties(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> dict:
    """Load configuration properties.

    Reads a KEY=VALUE properties file (if given) and overlays any
    ENVCRYPT_* environment variables on top of it.

    Args:
        path: Optional path to a properties / dotenv file.
        environ: Environment mapping to read overrides from (defaults to os.environ).

    Returns:
        Dictionary of property name to string value.
    """
    properties = {}
    if path:
        properties.update({k: v for k, v in dotenv_values(path).items() if v is not None})

    environ = os.environ if environ is None else environ
    for name in PROPERTY_NAMES:
        value = environ.get(env_name(name))
        if value is not None:
            properties[name] = value
    return properties


def _int_property(properties: Mapping[str, str], name: str, default: int) -> int:
    raw = properties.get(name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Property '{name}' must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"Property '{name}' must be positive, got {value}")
    return value


@dataclass(frozen=True)
class CipherConfig:
    """Cipher settings shared by the crypto engine and the providers."""
    transformation: str = "AES/GCM/NoPadding"
    algorithm: str = "AES"
    hash_algorithm: str = "SHA3-256"

    @classmethod
    def from_properties(cls, properties: Optional[Mapping[str, str]] = None) -> "CipherConfig":
        properties = properties or {}
        default = cls()
        return cls(
            transformation=properties.get("transformation", default.transformation),
            algorithm=properties.get("algorithm", default.algorithm),
            hash_algorithm=properties.get("hashAlgorithm", default.hash_algorithm),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Data-key cache tuning. `expire_duration` is in milliseconds."""
    initial_capacity: int = 16
    concurrency_level: int = 4
    maximum_size: int = 100
    expire_duration: int = 10000

    @classmethod
    def from_properties(cls, properties: Optional[Mapping[str, str]] = None) -> "CacheConfig":
        properties = properties or {}
        default = cls()
        return cls(
            initial_capacity=_int_property(properties, "initialCapacity", default.initial_capacity),
            concurrency_level=_int_property(properties, "concurrencyLevel", default.concurrency_level),
            maximum_size=_int_property(properties, "maximumSize", default.maximum_size),
            expire_duration=_int_property(properties, "expireDuration", default.expire_duration),
        )


@dataclass(frozen=True)
class GoogleKmsConfig:
    """Identity of a Google Cloud KMS crypto key."""
    project_id: Optional[str] = None
    location_id: Optional[str] = None
    key_ring_id: Optional[str] = None
    key_id: Optional[str] = None
    credential_file: Optional[str] = None

    @classmethod
    def from_properties(cls, properties: Optional[Mapping[str, str]] = None) -> "GoogleKmsConfig":
        properties = properties or {}
        return cls(
            project_id=properties.get("projectId"),
            location_id=properties.get("locationId"),
            key_ring_id=properties.get("keyRingId"),
            key_id=properties.get("keyId"),
            credential_file=properties.get("credentialFile"),
        )

    def crypto_key_name(self) -> str:
        """Full resource name of the crypto key."""
        return kms.KeyManagementServiceClient.crypto_key_path(
            self.project_id, self.location_id, self.key_ring_id, self.key_id
        )
