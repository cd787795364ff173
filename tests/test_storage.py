"""
Tests for the bucketed key-value stores.

Both backends must honour the same contract; most tests run against each.
"""
import os
import stat

import pytest

from coconut.exceptions import NotFound, StorageFailed
from coconut.storage import BucketRepository, MemoryStore, SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def kv(request, tmp_path):
    if request.param == "memory":
        backend = MemoryStore()
    else:
        backend = SQLiteStore(tmp_path / "store" / "test.db")
    backend.create_bucket("system")
    yield backend
    backend.close()


class TestStoreContract:
    """Behaviour shared by every backend."""

    def test_put_get(self, kv):
        kv.put("system", "salt", b"\x00\x01\x02")
        assert kv.get("system", "salt") == b"\x00\x01\x02"

    def test_overwrite(self, kv):
        kv.put("system", "k", b"one")
        kv.put("system", "k", b"two")
        assert kv.get("system", "k") == b"two"

    def test_get_missing(self, kv):
        with pytest.raises(NotFound) as exc:
            kv.get("system", "missing")
        assert exc.value.key == "missing"
        assert "missing" in str(exc.value)

    def test_not_found_is_key_error(self, kv):
        with pytest.raises(KeyError):
            kv.get("system", "missing")

    def test_delete(self, kv):
        kv.put("system", "k", b"v")
        kv.delete("system", "k")
        with pytest.raises(NotFound):
            kv.get("system", "k")

    def test_delete_missing(self, kv):
        with pytest.raises(NotFound):
            kv.delete("system", "missing")

    def test_list_keys(self, kv):
        for key in ("b", "a", "c"):
            kv.put("system", key, b"x")
        assert kv.list_keys("system") == ["a", "b", "c"]

    def test_buckets_are_isolated(self, kv):
        kv.create_bucket("secrets")
        kv.put("system", "k", b"system")
        kv.put("secrets", "k", b"secret")
        assert kv.get("system", "k") == b"system"
        assert kv.list_keys("secrets") == ["k"]

    def test_create_bucket_is_idempotent(self, kv):
        kv.put("system", "k", b"v")
        kv.create_bucket("system")
        assert kv.get("system", "k") == b"v"

    def test_unknown_bucket(self, kv):
        with pytest.raises(StorageFailed):
            kv.put("nope", "k", b"v")
        with pytest.raises(StorageFailed):
            kv.get("nope", "k")
        with pytest.raises(StorageFailed):
            kv.list_keys("nope")


class TestSQLiteStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "persist.db"
        with SQLiteStore(path) as first:
            first.create_bucket("system")
            first.put("system", "salt", b"abc")
        with SQLiteStore(path) as second:
            assert second.get("system", "salt") == b"abc"

    def test_file_permissions(self, tmp_path):
        path = tmp_path / "nested" / "perm.db"
        store = SQLiteStore(path)
        store.close()
        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode == 0o600

    def test_in_memory(self):
        store = SQLiteStore(":memory:")
        store.create_bucket("b")
        store.put("b", "k", b"v")
        assert store.get("b", "k") == b"v"
        store.close()

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageFailed):
            SQLiteStore(blocker / "db.sqlite")


class TestBucketRepository:
    def test_bound_operations(self):
        store = MemoryStore()
        store.create_bucket("secrets")
        repo = BucketRepository(store, "secrets")
        repo.put("id", b"v")
        assert repo.get("id") == b"v"
        assert repo.list_keys() == ["id"]
        assert repo.exists("id") is True
        repo.delete("id")
        assert repo.exists("id") is False
        assert "secrets" in repr(repo)

    def test_exists_treats_empty_as_absent(self):
        store = MemoryStore()
        store.create_bucket("system")
        repo = BucketRepository(store, "system")
        repo.put("salt", b"")
        assert repo.exists("salt") is False
