"""
Encrypted Record Store: transparent encrypt-on-write / decrypt-on-read over a bucket.

Each ``Secret`` is serialized to JSON, encrypted by the vault, and stored
under its own ``id``. Nothing but ciphertext ever reaches the store.

Security Note:
    Never log plaintext or ciphertext values. Only log record ids.
"""
import logging
from typing import Protocol

import orjson
from pydantic import ValidationError

from ..exceptions import (
    DecryptionFailed,
    DeserializationFailed,
    SerializationFailed,
    VaultLocked,
)
from ..models import Secret, utcnow
from ..storage import BucketRepository

logger = logging.getLogger("coconut.vault")


class SupportsEncryption(Protocol):
    """What the record store needs from a vault."""

    def is_unlocked(self) -> bool:
        ...

    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, ciphertext: str) -> str:
        ...


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------

def serialize_secret(secret: Secret) -> str:
    """Serialize a secret to its JSON text form (camelCase timestamps)."""
    try:
        return orjson.dumps(secret.model_dump(mode="json", by_alias=True)).decode("utf-8")
    except (TypeError, orjson.JSONEncodeError) as err:
        raise SerializationFailed(f"marshal secret: {err}") from err


def deserialize_secret(data: str) -> Secret:
    try:
        return Secret.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise DeserializationFailed(f"unmarshal secret: {err}") from err


class EncryptedRepository:
    """A typed, transparently encrypted collection of secrets.

    ``delete`` works on a locked vault; every other operation requires it
    unlocked.
    """

    def __init__(self, repo: BucketRepository, vault: SupportsEncryption):
        self._repo = repo
        self._vault = vault

    def __repr__(self) -> str:
        return f'<EncryptedRepository bucket={self._repo.bucket!r}>'

    @property
    def bucket(self) -> str:
        return self._repo.bucket

    def _ensure_unlocked(self) -> None:
        if not self._vault.is_unlocked():
            raise VaultLocked()

    def _store(self, secret: Secret) -> None:
        if not secret.id:
            raise SerializationFailed("secret id is required")
        data = serialize_secret(secret)
        enc = self._vault.encrypt(data)
        self._repo.put(secret.id, enc.encode("ascii"))

    def add(self, secret: Secret) -> str:
        """Encrypt and store a new secret under ``secret.id``.

        Returns:
            The secret id.

        Raises:
            VaultLocked, SerializationFailed, EncryptionFailed, StorageFailed
        """
        self._ensure_unlocked()
        self._store(secret)
        logger.debug("Secret added: id=%s", secret.id)
        return secret.id

    def get(self, secret_id: str) -> Secret:
        """Load and decrypt one secret.

        Raises:
            VaultLocked, NotFound, DecryptionFailed, DeserializationFailed
        """
        self._ensure_unlocked()
        raw = self._repo.get(secret_id)
        try:
            ciphertext = raw.decode("ascii")
        except UnicodeDecodeError as err:
            raise DecryptionFailed(
                f"stored value for {secret_id!r} is not ciphertext"
            ) from err
        return deserialize_secret(self._vault.decrypt(ciphertext))

    def update(self, secret: Secret) -> Secret:
        """Refresh ``updated_at`` and overwrite the stored secret.

        The caller's instance is left untouched.

        Returns:
            The stored copy, with its new timestamp.
        """
        self._ensure_unlocked()
        updated = secret.model_copy(update={"updated_at": utcnow()})
        self._store(updated)
        logger.debug("Secret updated: id=%s", secret.id)
        return updated

    def delete(self, secret_id: str) -> None:
        """Remove a secret. Does not need the vault unlocked.

        Raises:
            NotFound: If no secret has this id.
        """
        self._repo.delete(secret_id)
        logger.debug("Secret deleted: id=%s", secret_id)

    def list(self) -> list[Secret]:
        """Decrypt every secret in the bucket.

        Any unreadable record aborts the whole listing.
        """
        self._ensure_unlocked()
        secrets: list[Secret] = []
        for key in self._repo.list_keys():
            try:
                secrets.append(self.get(key))
            except Exception:
                logger.error("Failed to load secret id=%s", key)
                raise
        return secrets
