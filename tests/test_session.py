"""
Tests for the Session Manager.

Tests cover:
- Session creation and the split of wrapped key and session key
- Inactivity expiry, including the min(configured, recorded) rule
- Zero timeout disabling expiry
- Activity refresh, clearing and remaining time
- Corrupted and partial session data
"""
import base64
from datetime import timedelta

import orjson
import pytest

from coconut.exceptions import (
    NoActiveSession,
    SessionCorrupted,
    SessionError,
    SessionExpired,
)
from coconut.models import SessionRecord
from coconut.vault.config import VaultConfig
from coconut.vault.crypto import AESGCMCipher, KEY_LENGTH
from coconut.vault.session import SESSION_DATA_KEY, SESSION_KEY_KEY, SessionManager


@pytest.fixture
def manager(system_repo, config, clock):
    return SessionManager(system_repo, config, clock=clock)


def stored_record(system_repo) -> SessionRecord:
    return SessionRecord.model_validate(orjson.loads(system_repo.get(SESSION_DATA_KEY)))


class TestCreateSession:
    """Tests for create_session."""

    def test_creates_both_records(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        assert system_repo.exists(SESSION_DATA_KEY)
        session_key = system_repo.get(SESSION_KEY_KEY)
        assert len(session_key) == KEY_LENGTH

    def test_record_fields(self, manager, system_repo, vault_key, clock):
        manager.create_session(vault_key)
        record = stored_record(system_repo)
        assert record.unlocked_at == clock.now
        assert record.last_activity_at == clock.now
        assert record.timeout_seconds == 300

    def test_vault_key_is_not_stored_in_clear(self, manager, system_repo, vault_key):
        """Test neither record holds the raw or base64 vault key."""
        manager.create_session(vault_key)
        data = system_repo.get(SESSION_DATA_KEY)
        encoded = base64.b64encode(vault_key)
        assert encoded not in data
        assert vault_key not in data
        assert system_repo.get(SESSION_KEY_KEY) != vault_key

    def test_wrapped_key_needs_session_key(self, manager, system_repo, vault_key):
        """Test the wrapped key decrypts under the session key to base64(vault key)."""
        manager.create_session(vault_key)
        record = stored_record(system_repo)
        session_key = system_repo.get(SESSION_KEY_KEY)
        unwrapped = AESGCMCipher().decrypt(session_key, record.encrypted_key)
        assert base64.b64decode(unwrapped) == vault_key

    def test_fresh_session_key_each_time(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        first = system_repo.get(SESSION_KEY_KEY)
        manager.create_session(vault_key)
        assert system_repo.get(SESSION_KEY_KEY) != first

    def test_record_json_field_names(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        data = orjson.loads(system_repo.get(SESSION_DATA_KEY))
        assert set(data) == {
            "unlocked_at", "last_activity_at", "timeout_seconds", "encrypted_key"
        }


class TestCachedKey:
    def test_get_cached_key(self, manager, vault_key):
        manager.create_session(vault_key)
        assert manager.get_cached_key() == vault_key

    def test_no_session(self, manager):
        with pytest.raises(NoActiveSession):
            manager.get_cached_key()

    def test_missing_session_key(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        system_repo.delete(SESSION_KEY_KEY)
        with pytest.raises(SessionCorrupted):
            manager.get_cached_key()

    def test_swapped_session_key(self, manager, system_repo, vault_key):
        """Test a session key from another session cannot unwrap this one."""
        manager.create_session(vault_key)
        system_repo.put(SESSION_KEY_KEY, bytes(KEY_LENGTH))
        with pytest.raises(SessionCorrupted):
            manager.get_cached_key()


class TestExpiry:
    """Inactivity timeout behaviour."""

    def test_valid_then_expired(self, system_repo, clock, vault_key):
        """Test a 1s session is valid at 0.5s and expired at 1.5s."""
        cfg = VaultConfig(auto_lock_secs=1)
        manager = SessionManager(system_repo, cfg, clock=clock)
        manager.create_session(vault_key)

        clock.advance(0.5)
        assert manager.is_valid() is True
        assert manager.get_cached_key() == vault_key

        clock.advance(1.0)
        assert manager.is_valid() is False
        with pytest.raises(SessionExpired):
            manager.get_cached_key()
        # data is still there, just not usable
        assert system_repo.exists(SESSION_DATA_KEY)
        assert system_repo.exists(SESSION_KEY_KEY)

    def test_exact_boundary_is_expired(self, system_repo, clock, vault_key):
        cfg = VaultConfig(auto_lock_secs=10)
        manager = SessionManager(system_repo, cfg, clock=clock)
        manager.create_session(vault_key)
        clock.advance(10)
        assert manager.is_valid() is False

    def test_lowering_config_applies_immediately(
        self, manager, config, clock, vault_key
    ):
        """Test a lower live timeout shortens an existing session."""
        manager.create_session(vault_key)
        clock.advance(60)
        assert manager.is_valid() is True
        config.auto_lock_secs = 30
        assert manager.is_valid() is False

    def test_raising_config_does_not_extend(self, system_repo, clock, vault_key):
        """Test a higher live timeout does not outlive the recorded one."""
        cfg = VaultConfig(auto_lock_secs=30)
        manager = SessionManager(system_repo, cfg, clock=clock)
        manager.create_session(vault_key)
        cfg.auto_lock_secs = 3600
        clock.advance(45)
        assert manager.is_valid() is False
        assert manager.get_remaining_time() == timedelta(0)

    def test_zero_config_disables_expiry(self, manager, config, clock, vault_key):
        """Test live timeout 0 keeps any session valid, whatever was recorded."""
        manager.create_session(vault_key)
        config.auto_lock_secs = 0
        clock.advance(10 * 365 * 24 * 3600)
        assert manager.is_valid() is True
        assert manager.get_cached_key() == vault_key
        assert manager.get_remaining_time() is None

    def test_zero_recorded_is_zero_window(self, system_repo, clock, vault_key):
        """Test a session created with expiry disabled is invalid once a timeout is set."""
        cfg = VaultConfig(auto_lock_secs=0)
        manager = SessionManager(system_repo, cfg, clock=clock)
        manager.create_session(vault_key)
        assert stored_record(system_repo).timeout_seconds == 0
        assert manager.is_valid() is True

        cfg.auto_lock_secs = 60
        clock.advance(30)
        assert manager.is_valid() is False
        assert manager.get_remaining_time() == timedelta(0)
        with pytest.raises(SessionExpired):
            manager.get_cached_key()

        cfg.auto_lock_secs = 0
        assert manager.is_valid() is True


class TestActivity:
    def test_update_activity_extends(self, manager, clock, vault_key):
        """Test activity resets the inactivity timer."""
        manager.create_session(vault_key)
        clock.advance(200)
        manager.update_activity()
        clock.advance(200)
        assert manager.is_valid() is True
        clock.advance(101)
        assert manager.is_valid() is False

    def test_update_activity_keeps_unlocked_at(
        self, manager, system_repo, clock, vault_key
    ):
        manager.create_session(vault_key)
        created = clock.now
        clock.advance(5)
        manager.update_activity()
        record = stored_record(system_repo)
        assert record.unlocked_at == created
        assert record.last_activity_at == clock.now

    def test_update_activity_without_session(self, manager, system_repo):
        """Test activity refresh never creates a session."""
        with pytest.raises(NoActiveSession):
            manager.update_activity()
        assert not system_repo.exists(SESSION_DATA_KEY)


class TestClear:
    def test_clear_removes_both(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        manager.clear()
        assert not system_repo.exists(SESSION_DATA_KEY)
        assert not system_repo.exists(SESSION_KEY_KEY)
        assert manager.is_valid() is False

    def test_clear_without_session(self, manager):
        """Test clearing nothing is not an error."""
        manager.clear()
        manager.clear()

    def test_clear_partial_session(self, manager, system_repo, vault_key):
        manager.create_session(vault_key)
        system_repo.delete(SESSION_DATA_KEY)
        manager.clear()
        assert not system_repo.exists(SESSION_KEY_KEY)


class TestRemainingTime:
    def test_no_session(self, manager):
        assert manager.get_remaining_time() == timedelta(0)

    def test_counts_down(self, manager, clock, vault_key):
        manager.create_session(vault_key)
        assert manager.get_remaining_time() == timedelta(seconds=300)
        clock.advance(100)
        assert manager.get_remaining_time() == timedelta(seconds=200)

    def test_never_negative(self, manager, clock, vault_key):
        manager.create_session(vault_key)
        clock.advance(1000)
        assert manager.get_remaining_time() == timedelta(0)


class TestCorruptedSession:
    """Garbage session bytes are reported, never crash."""

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json at all",
            b"{}",
            b'{"unlocked_at": "yesterday"}',
            b"\xff\xfe\x00",
        ],
    )
    def test_corrupted_data(self, manager, system_repo, vault_key, payload):
        manager.create_session(vault_key)
        system_repo.put(SESSION_DATA_KEY, payload)
        assert manager.is_valid() is False
        with pytest.raises(SessionError):
            manager.get_cached_key()
        assert manager.get_remaining_time() == timedelta(0)

    def test_corrupted_wrapped_key(self, manager, system_repo, vault_key):
        """Test a record that parses but holds a bad wrapped key."""
        manager.create_session(vault_key)
        record = stored_record(system_repo)
        record.encrypted_key = "AAAA"
        system_repo.put(SESSION_DATA_KEY, orjson.dumps(record.model_dump(mode="json")))
        assert manager.is_valid() is True
        with pytest.raises(SessionCorrupted):
            manager.get_cached_key()

    def test_wrapped_non_base64(self, manager, system_repo, vault_key):
        """Test a wrapped value that is not base64 of a key."""
        manager.create_session(vault_key)
        session_key = system_repo.get(SESSION_KEY_KEY)
        record = stored_record(system_repo)
        record.encrypted_key = AESGCMCipher().encrypt(session_key, "!!not base64!!")
        system_repo.put(SESSION_DATA_KEY, orjson.dumps(record.model_dump(mode="json")))
        with pytest.raises(SessionCorrupted):
            manager.get_cached_key()

    def test_wrong_length_key(self, manager, system_repo, vault_key):
        manager.create_session(b"x" * 8)
        with pytest.raises(SessionCorrupted):
            manager.get_cached_key()
