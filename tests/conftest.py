"""Shared fixtures for the coconut test-suite."""
import functools
from datetime import datetime, timedelta, timezone

import pytest

from coconut.storage import BucketRepository, MemoryStore
from coconut.vault.config import VaultConfig
from coconut.vault.crypto import derive_key


class FakeClock:
    """Manually advanced time source for session expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# Cheap Argon2id parameters, enough to exercise the real code path.
fast_kdf = functools.partial(
    derive_key, time_cost=1, memory_cost=8 * 1024, parallelism=1
)


@pytest.fixture
def store():
    mem = MemoryStore()
    mem.create_bucket("system")
    mem.create_bucket("secrets")
    return mem


@pytest.fixture
def system_repo(store):
    return BucketRepository(store, "system")


@pytest.fixture
def secrets_repo(store):
    return BucketRepository(store, "secrets")


@pytest.fixture
def config(tmp_path):
    return VaultConfig(db_path=tmp_path / "coconut.db", auto_lock_secs=300)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault_key():
    return bytes(range(32))


@pytest.fixture
def kdf():
    return fast_kdf
