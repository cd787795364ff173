"""
Session Manager: cache the vault key between invocations without storing it in the clear.

A session is two records in the system bucket:
    ``session:data`` → SessionRecord (timestamps, timeout, wrapped vault key)
    ``session:key``  → raw 32-byte session key, fresh for every session

The wrapped key is ``AESGCM(session_key, base64(vault_key))``; a copy of
``session:data`` alone does not yield the vault key.

Expiry is by inactivity: a session is valid while
``now - last_activity_at < min(configured, recorded)`` seconds. A configured
value of 0 disables expiry outright. The configured value is read live, so
lowering it shortens existing sessions immediately while raising it never
extends one.

Security Note:
    Never log the vault key, the session key or the wrapped key.
"""
import base64
import binascii
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import orjson
from pydantic import ValidationError

from .config import VaultConfig
from .crypto import KEY_LENGTH, AESGCMCipher, CipherStrategy, generate_key
from ..exceptions import (
    DecryptionFailed,
    NoActiveSession,
    NotFound,
    SessionCorrupted,
    SessionError,
    SessionExpired,
    StorageFailed,
)
from ..models import SessionRecord, utcnow
from ..storage import BucketRepository

logger = logging.getLogger("coconut.session")

SESSION_DATA_KEY = "session:data"
SESSION_KEY_KEY = "session:key"


class SessionManager:
    """Persist and recover the vault key subject to an inactivity timeout.

    Args:
        repo: Repository bound to the system bucket.
        config: Live configuration; ``auto_lock_secs`` is read on every check.
        cipher: Cipher used to wrap the vault key.
        clock: Returns the current timezone-aware datetime.
    """

    def __init__(
        self,
        repo: BucketRepository,
        config: VaultConfig,
        cipher: Optional[CipherStrategy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repo = repo
        self._config = config
        self._cipher = cipher or AESGCMCipher()
        self._clock = clock or utcnow
        self._mutex = threading.RLock()

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _save_session(self, record: SessionRecord) -> None:
        self._repo.put(SESSION_DATA_KEY, orjson.dumps(record.model_dump(mode="json")))

    def _load_session(self) -> SessionRecord:
        """Read the session record.

        Raises:
            NoActiveSession: If no session is stored.
            SessionCorrupted: If the stored bytes do not parse.
        """
        try:
            data = self._repo.get(SESSION_DATA_KEY)
        except NotFound as err:
            raise NoActiveSession() from err
        try:
            return SessionRecord.model_validate(orjson.loads(data))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise SessionCorrupted(f"failed to read session: {err}") from err

    def _effective_timeout(self, record: SessionRecord) -> Optional[int]:
        """Seconds of allowed inactivity, or None when expiry is disabled.

        Only the configured value can disable expiry; a recorded 0 is a
        zero-second window.
        """
        configured = self._config.auto_lock_secs
        if configured == 0:
            return None
        return min(configured, record.timeout_seconds)

    def _remaining(self, record: SessionRecord) -> Optional[timedelta]:
        timeout = self._effective_timeout(record)
        if timeout is None:
            return None
        elapsed = self._clock() - record.last_activity_at
        return timedelta(seconds=timeout) - elapsed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_session(self, vault_key: bytes) -> None:
        """Wrap ``vault_key`` under a fresh session key and persist both.

        Raises:
            EncryptionFailed: If wrapping fails.
            StorageFailed: If either record cannot be written.
        """
        session_key = generate_key()
        wrapped = self._cipher.encrypt(
            session_key, base64.b64encode(bytes(vault_key)).decode("ascii")
        )
        with self._mutex:
            now = self._clock()
            record = SessionRecord(
                unlocked_at=now,
                last_activity_at=now,
                timeout_seconds=self._config.auto_lock_secs,
                encrypted_key=wrapped,
            )
            self._save_session(record)
            self._repo.put(SESSION_KEY_KEY, session_key)
        logger.info(
            "Session created (timeout=%ds)", self._config.auto_lock_secs
        )

    def is_valid(self) -> bool:
        """True if a readable session exists and has not expired."""
        with self._mutex:
            try:
                record = self._load_session()
            except (SessionError, StorageFailed) as err:
                logger.debug("No valid session: %s", err)
                return False
            remaining = self._remaining(record)
        return remaining is None or remaining > timedelta(0)

    def get_cached_key(self) -> bytes:
        """Unwrap and return the cached vault key.

        Raises:
            NoActiveSession: If there is no session.
            SessionExpired: If the session timed out.
            SessionCorrupted: If the session cannot be unwrapped.
        """
        with self._mutex:
            record = self._load_session()
            remaining = self._remaining(record)
            if remaining is not None and remaining <= timedelta(0):
                raise SessionExpired()
            try:
                session_key = self._repo.get(SESSION_KEY_KEY)
            except NotFound as err:
                raise SessionCorrupted("session key is missing") from err
        try:
            encoded = self._cipher.decrypt(session_key, record.encrypted_key)
            vault_key = base64.b64decode(encoded, validate=True)
        except (DecryptionFailed, binascii.Error, ValueError) as err:
            raise SessionCorrupted(f"failed to unwrap vault key: {err}") from err
        if len(vault_key) != KEY_LENGTH:
            raise SessionCorrupted(
                f"cached vault key has wrong length: {len(vault_key)}"
            )
        return vault_key

    def update_activity(self) -> None:
        """Reset the inactivity timer. Never creates a session.

        Raises:
            NoActiveSession: If there is no session.
            SessionCorrupted: If the session cannot be read.
        """
        with self._mutex:
            record = self._load_session()
            record.last_activity_at = self._clock()
            self._save_session(record)

    def clear(self) -> None:
        """Delete both session records. Missing records are not an error."""
        errors: list[StorageFailed] = []
        with self._mutex:
            for key in (SESSION_DATA_KEY, SESSION_KEY_KEY):
                try:
                    self._repo.delete(key)
                except NotFound:
                    pass
                except StorageFailed as err:
                    errors.append(err)
        if errors:
            raise errors[0]
        logger.info("Session cleared")

    def get_remaining_time(self) -> Optional[timedelta]:
        """Time left before the session expires.

        Returns:
            ``timedelta(0)`` if there is no (readable) session or it expired,
            None if expiry is disabled.
        """
        with self._mutex:
            try:
                record = self._load_session()
            except (SessionError, StorageFailed):
                return timedelta(0)
            remaining = self._remaining(record)
        if remaining is None:
            return None
        return max(timedelta(0), remaining)
