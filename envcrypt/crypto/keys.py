import base64
import binascii
import struct
from dataclasses import dataclass

from envcrypt.errors import CryptoFailure

# Raw byte form:
#   Magic (4 bytes): b'EKM1'
#   KeyLen (2 bytes, big endian) + Key
#   NonceLen (2 bytes, big endian) + Nonce
MAGIC = b'EKM1'
NONCE_SIZE = 16
PRINTABLE_SEPARATOR = ":"


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64_decode(text: str) -> bytes:
    """Decode base64 in either alphabet, padded or not. Rejects foreign characters."""
    if isinstance(text, str):
        text = text.encode('ascii', errors='strict')
    text = text.replace(b'+', b'-').replace(b'/', b'_').rstrip(b'=')
    text += b'=' * (-len(text) % 4)
    return base64.b64decode(text, altchars=b'-_', validate=True)


def b64url_decode(text: str) -> bytes:
    """Decode canonical unpadded base64url, exactly as b64url_encode produces it.

    Any other spelling of the same bytes (padding, '+'/'/', non-zero spare
    bits in the last character) raises binascii.Error.
    """
    if not isinstance(text, str):
        raise binascii.Error("Expected a base64url string")
    data = b64_decode(text)
    if b64url_encode(data) != text:
        raise binascii.Error("Non-canonical base64url encoding")
    return data


@dataclass(frozen=True)
class KeyMaterial:
    """A data key and the nonce it is used with. Always handled as a pair."""
    data_key: bytes
    nonce: bytes

    def __repr__(self):
        # Keep key bytes out of logs and tracebacks
        return f"KeyMaterial(data_key=<{len(self.data_key)} bytes>, nonce=<{len(self.nonce)} bytes>)"

    def to_printable(self) -> str:
        """Transport-safe form: b64url(data_key) + ':' + b64url(nonce)."""
        return b64url_encode(self.data_key) + PRINTABLE_SEPARATOR + b64url_encode(self.nonce)

    @classmethod
    def from_printable(cls, text: str) -> "KeyMaterial":
        parts = text.split(PRINTABLE_SEPARATOR) if isinstance(text, str) else []
        if len(parts) != 2 or not all(parts):
            raise CryptoFailure("Invalid key material format")
        try:
            return cls(b64url_decode(parts[0]), b64url_decode(parts[1]))
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure("Invalid key material format") from e

    def to_bytes(self) -> bytes:
        """Self-describing binary form, used as plaintext when wrapping."""
        return (MAGIC
                + struct.pack('>H', len(self.data_key)) + self.data_key
                + struct.pack('>H', len(self.nonce)) + self.nonce)

    @classmethod
    def from_bytes(cls, blob: bytes) -> "KeyMaterial":
        if blob[:len(MAGIC)] != MAGIC:
            raise CryptoFailure("Invalid key material encoding")

        offset = len(MAGIC)
        fields = []
        for _ in range(2):
            header = blob[offset:offset + 2]
            if len(header) != 2:
                raise CryptoFailure("Truncated key material encoding")
            size = struct.unpack('>H', header)[0]
            offset += 2
            value = blob[offset:offset + size]
            if len(value) != size:
                raise CryptoFailure("Truncated key material encoding")
            fields.append(value)
            offset += size

        if offset != len(blob):
            raise CryptoFailure("Trailing bytes after key material encoding")
        return cls(fields[0], fields[1])
