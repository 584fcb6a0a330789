class CipherException(Exception):
    """Base class for every error raised by envcrypt."""


class UnsupportedAlgorithm(CipherException):
    """Raised when a key generator, cipher or digest name is not recognized."""

    def __init__(self, algorithm: str, kind: str = "algorithm"):
        self.algorithm = algorithm
        self.kind = kind
        super().__init__(f"Unsupported {kind}: {algorithm}")


class CryptoFailure(CipherException):
    """Raised when encryption or decryption fails.

    Tag mismatches and parameter errors share this type and message so callers
    cannot tell a tampered ciphertext from a wrong key.
    """


class MalformedCipherText(CipherException):
    """Raised when a wire-format string does not have the `{key}ciphertext` shape."""


class ProviderInitFailure(CipherException):
    """Raised when a provider (or its remote client) cannot be initialized."""


class RemoteProviderFailure(CipherException):
    """Raised when a remote wrap/unwrap call fails."""
