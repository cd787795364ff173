"""
Vault Errors: typed failures raised by the vault, session and record layers.

Every failure path returns one of these to the caller. Library exceptions
(cryptography, orjson, pydantic, sqlite3) are translated at the boundary
with ``raise ... from err`` so the original cause stays attached.
"""


class VaultError(Exception):
    """Base class for all coconut errors."""


class VaultLocked(VaultError):
    """An encrypt/decrypt/token operation was attempted on a locked vault."""

    def __init__(self, message: str = "vault is locked"):
        super().__init__(message)


class VaultNotFound(VaultError):
    """No salt or verification token in the system bucket."""

    def __init__(self, message: str = "vault not initialized"):
        super().__init__(message)


class VaultAlreadyExists(VaultError):
    def __init__(self, message: str = "vault already initialized"):
        super().__init__(message)


class IncorrectPassword(VaultError):
    """The verification token did not decrypt under the candidate key."""

    def __init__(self, message: str = "incorrect master password"):
        super().__init__(message)


class VerificationCorrupted(VaultError):
    """The verification token decrypted, but not to the known constant."""

    def __init__(
        self, message: str = "vault verification failed - possible corruption"
    ):
        super().__init__(message)


class EncryptionFailed(VaultError):
    pass


class DecryptionFailed(VaultError):
    pass


class SerializationFailed(VaultError):
    pass


class DeserializationFailed(VaultError):
    pass


class StorageFailed(VaultError):
    """Raised by a key-value store when the backend itself fails."""


class NotFound(VaultError, KeyError):
    """A key is absent from a bucket."""

    def __init__(self, key: str, bucket: str | None = None):
        self.key = key
        self.bucket = bucket
        where = f" in bucket {bucket!r}" if bucket else ""
        super().__init__(f"key {key!r} not found{where}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class SessionError(VaultError):
    """Base class for session cache failures.

    All of them are recoverable by asking for the master password again.
    """


class SessionExpired(SessionError):
    def __init__(self, message: str = "session expired or invalid"):
        super().__init__(message)


class NoActiveSession(SessionError):
    def __init__(self, message: str = "no active session"):
        super().__init__(message)


class SessionCorrupted(SessionError):
    pass


class ConfigError(VaultError):
    pass
