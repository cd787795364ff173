"""
Bucketed key-value storage.

The vault core only needs ``put/get/delete/list_keys/create_bucket`` over
named buckets of opaque bytes. ``MemoryStore`` keeps everything in process;
``SQLiteStore`` persists to a single database file and relies on SQLite's
own file locking for single-writer exclusivity.

Security Note:
    Stores only ever see ciphertext, salts and session material.
    Never log values, only bucket and key names.
"""
import os
import sqlite3
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from .exceptions import NotFound, StorageFailed

logger = logging.getLogger("coconut.storage")


class KeyValueStore(ABC):
    """Durable bucketed byte storage."""

    @abstractmethod
    def create_bucket(self, bucket: str) -> None:
        """Create ``bucket`` if it does not exist yet."""

    @abstractmethod
    def put(self, bucket: str, key: str, value: bytes) -> None:
        ...

    @abstractmethod
    def get(self, bucket: str, key: str) -> bytes:
        """Return the stored bytes.

        Raises:
            NotFound: If ``key`` is absent.
            StorageFailed: If the bucket is missing or the backend fails.
        """

    @abstractmethod
    def delete(self, bucket: str, key: str) -> None:
        """Remove ``key``.

        Raises:
            NotFound: If ``key`` is absent.
        """

    @abstractmethod
    def list_keys(self, bucket: str) -> list[str]:
        ...

    def close(self) -> None:
        pass

    def __enter__(self) -> "KeyValueStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and throwaway vaults."""

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def _bucket(self, bucket: str) -> dict[str, bytes]:
        try:
            return self._buckets[bucket]
        except KeyError:
            raise StorageFailed(f"bucket {bucket!r} not found") from None

    def create_bucket(self, bucket: str) -> None:
        with self._lock:
            self._buckets.setdefault(bucket, {})

    def put(self, bucket: str, key: str, value: bytes) -> None:
        with self._lock:
            self._bucket(bucket)[key] = bytes(value)

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            data = self._bucket(bucket)
            if key not in data:
                raise NotFound(key, bucket)
            return data[key]

    def delete(self, bucket: str, key: str) -> None:
        with self._lock:
            data = self._bucket(bucket)
            if key not in data:
                raise NotFound(key, bucket)
            del data[key]

    def list_keys(self, bucket: str) -> list[str]:
        with self._lock:
            return sorted(self._bucket(bucket))


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS buckets (
    name TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS entries (
    bucket TEXT NOT NULL REFERENCES buckets (name),
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""

_SELECT_BUCKET = "SELECT 1 FROM buckets WHERE name = ?"
_INSERT_BUCKET = "INSERT OR IGNORE INTO buckets (name) VALUES (?)"
_UPSERT_ENTRY = """
INSERT INTO entries (bucket, key, value) VALUES (?, ?, ?)
ON CONFLICT (bucket, key) DO UPDATE SET value = excluded.value
"""
_SELECT_ENTRY = "SELECT value FROM entries WHERE bucket = ? AND key = ?"
_DELETE_ENTRY = "DELETE FROM entries WHERE bucket = ? AND key = ?"
_SELECT_KEYS = "SELECT key FROM entries WHERE bucket = ? ORDER BY key"


class SQLiteStore(KeyValueStore):
    """Key-value store backed by one SQLite file.

    A single connection is shared and guarded by a lock; writes run inside
    ``BEGIN IMMEDIATE`` so a second process waits (up to ``timeout``) rather
    than interleaving.
    """

    def __init__(self, path: str | os.PathLike, timeout: float = 1.0):
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.path,
                timeout=timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.executescript(_CREATE_TABLES)
        except (OSError, sqlite3.Error) as err:
            raise StorageFailed(f"cannot open database {self.path}: {err}") from err
        if self.path != ":memory:":
            os.chmod(self.path, 0o600)
        logger.debug("Opened SQLite store at %s", self.path)

    def _check_bucket(self, bucket: str) -> None:
        if self._conn.execute(_SELECT_BUCKET, (bucket,)).fetchone() is None:
            raise StorageFailed(f"bucket {bucket!r} not found")

    def _write(self, bucket: str | None, sql: str, params: tuple) -> int:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    if bucket is not None:
                        self._check_bucket(bucket)
                    rowcount = self._conn.execute(sql, params).rowcount
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
                return rowcount
            except sqlite3.Error as err:
                raise StorageFailed(str(err)) from err

    def create_bucket(self, bucket: str) -> None:
        self._write(None, _INSERT_BUCKET, (bucket,))

    def put(self, bucket: str, key: str, value: bytes) -> None:
        self._write(bucket, _UPSERT_ENTRY, (bucket, key, bytes(value)))

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            try:
                self._check_bucket(bucket)
                row = self._conn.execute(_SELECT_ENTRY, (bucket, key)).fetchone()
            except sqlite3.Error as err:
                raise StorageFailed(str(err)) from err
        if row is None:
            raise NotFound(key, bucket)
        return bytes(row[0])

    def delete(self, bucket: str, key: str) -> None:
        if self._write(bucket, _DELETE_ENTRY, (bucket, key)) == 0:
            raise NotFound(key, bucket)

    def list_keys(self, bucket: str) -> list[str]:
        with self._lock:
            try:
                self._check_bucket(bucket)
                rows = self._conn.execute(_SELECT_KEYS, (bucket,)).fetchall()
            except sqlite3.Error as err:
                raise StorageFailed(str(err)) from err
        return [row[0] for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class BucketRepository:
    """A view of a store bound to one bucket."""

    def __init__(self, store: KeyValueStore, bucket: str):
        self.store = store
        self.bucket = bucket

    def __repr__(self) -> str:
        return f'<BucketRepository bucket={self.bucket!r}>'

    def put(self, key: str, value: bytes) -> None:
        self.store.put(self.bucket, key, value)

    def get(self, key: str) -> bytes:
        return self.store.get(self.bucket, key)

    def delete(self, key: str) -> None:
        self.store.delete(self.bucket, key)

    def list_keys(self) -> list[str]:
        return self.store.list_keys(self.bucket)

    def exists(self, key: str) -> bool:
        try:
            return len(self.get(key)) > 0
        except NotFound:
            return False
