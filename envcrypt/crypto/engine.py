import os
import binascii
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envcrypt.config import CipherConfig
from envcrypt.crypto.keys import KeyMaterial, NONCE_SIZE, b64_decode, b64url_encode
from envcrypt.errors import CryptoFailure, UnsupportedAlgorithm

# Key generator algorithms and their key size (bits)
KEY_SIZES = {
    "AES": 256,
}

# Supported cipher transformations. GCM always uses a 128-bit tag.
TRANSFORMATIONS = {
    "AES/GCM/NoPadding": AESGCM,
}

DIGESTS = {
    "SHA3-224": hashes.SHA3_224,
    "SHA3-256": hashes.SHA3_256,
    "SHA3-384": hashes.SHA3_384,
    "SHA3-512": hashes.SHA3_512,
    "SHA-224": hashes.SHA224,
    "SHA-256": hashes.SHA256,
    "SHA-384": hashes.SHA384,
    "SHA-512": hashes.SHA512,
}

SALT_SIZE = 16


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Ciphertext together with the key material that produced it."""
    key: KeyMaterial
    ciphertext: bytes


def generate_key(algorithm: str = "AES") -> KeyMaterial:
    """Generate a random data key and a random 16-byte nonce."""
    bits = KEY_SIZES.get(algorithm.upper() if isinstance(algorithm, str) else algorithm)
    if bits is None:
        raise UnsupportedAlgorithm(str(algorithm), "key algorithm")
    return KeyMaterial(os.urandom(bits // 8), os.urandom(NONCE_SIZE))


def generate_salt() -> str:
    return b64url_encode(os.urandom(SALT_SIZE))


class CryptoEngine:
    def __init__(self, config: CipherConfig | None = None):
        self.config = config or CipherConfig()

    def generate_key(self, algorithm: str | None = None) -> KeyMaterial:
        """Generate fresh key material for `algorithm` (defaults to the configured one)."""
        return generate_key(algorithm or self.config.algorithm)

    def _aead(self, key: bytes):
        aead_cls = TRANSFORMATIONS.get(self.config.transformation)
        if aead_cls is None:
            raise UnsupportedAlgorithm(self.config.transformation, "transformation")
        return aead_cls(key)

    def encrypt(self, plaintext: bytes, key: KeyMaterial | None = None) -> EncryptedEnvelope:
        """Encrypt `plaintext` with AES-GCM.

        A new key is generated when `key` is None. A supplied key is used as-is,
        so the caller must never pass the same key for two different plaintexts.
        """
        if key is None:
            key = self.generate_key()
        try:
            ciphertext = self._aead(key.data_key).encrypt(key.nonce, plaintext, None)
        except (UnsupportedAlgorithm, ValueError, TypeError) as e:
            raise CryptoFailure("Encryption failed") from e
        return EncryptedEnvelope(key, ciphertext)

    def decrypt(self, envelope: EncryptedEnvelope) -> bytes:
        """Decrypt and authenticate an envelope.

        Tag mismatch and parameter errors raise the same CryptoFailure.
        """
        key = envelope.key
        try:
            return self._aead(key.data_key).decrypt(key.nonce, envelope.ciphertext, None)
        except (InvalidTag, UnsupportedAlgorithm, ValueError, TypeError) as e:
            raise CryptoFailure("Decryption failed") from e

    def hash(self, plaintext: str, salt: str) -> str:
        """Salted one-way digest of `plaintext`, base64url encoded.

        Deterministic for the same (plaintext, salt), so it can be used for
        equality checks without storing the secret.
        """
        digest_cls = DIGESTS.get(self.config.hash_algorithm.upper())
        if digest_cls is None:
            raise UnsupportedAlgorithm(self.config.hash_algorithm, "digest")
        try:
            salt_bytes = b64_decode(salt)
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure("Invalid salt encoding") from e

        digest = hashes.Hash(digest_cls())
        digest.update(salt_bytes)
        digest.update(plaintext.encode('utf-8'))
        return b64url_encode(digest.finalize())
