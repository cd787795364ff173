"""
Vault Context: explicit wiring of config, store, vault, session and records.

Replaces process-wide state: every flow takes a ``VaultContext`` and acts on
it. The flows here are the ones a front end needs:

- ``initialize_vault(ctx, password)``: one-time vault creation
- ``ensure_vault_unlocked(ctx, prompt)``: cached session key, or prompt
- ``lock_vault(ctx)``: clear the session and zero the in-memory key

Security Note:
    The master password only ever lives in a local variable of the flow that
    prompted for it. Never log it, the derived key, or decrypted values.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .exceptions import (
    SessionCorrupted,
    SessionError,
    SessionExpired,
    VaultAlreadyExists,
    VaultError,
    VaultNotFound,
)
from .storage import BucketRepository, KeyValueStore, SQLiteStore
from .vault.config import VaultConfig, load_config, save_config
from .vault.crypto import AESGCMCipher, CipherStrategy, derive_key, generate_salt
from .vault.repository import EncryptedRepository
from .vault.session import SessionManager
from .vault.vault import (
    SALT_KEY,
    VERIFICATION_TOKEN_KEY,
    Vault,
    check_vault_exists,
    load_salt,
    unlock_with_key,
    verify_vault_password,
)

logger = logging.getLogger("coconut.context")

PasswordPrompt = Callable[[], str]
KeyDerivation = Callable[[str, bytes], bytes]


@dataclass
class VaultContext:
    """Everything one vault invocation works with."""

    config: VaultConfig
    store: KeyValueStore
    system: BucketRepository
    vault: Vault
    session: SessionManager
    secrets: EncryptedRepository
    cipher: CipherStrategy = field(default_factory=AESGCMCipher)
    kdf: KeyDerivation = derive_key

    @classmethod
    def open(
        cls,
        config: Optional[VaultConfig] = None,
        store: Optional[KeyValueStore] = None,
        *,
        cipher: Optional[CipherStrategy] = None,
        kdf: KeyDerivation = derive_key,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "VaultContext":
        """Open the store, load persisted configuration and wire the components.

        Args:
            config: Base configuration; defaults to ``VaultConfig.from_env()``.
            store: Backing store; defaults to ``SQLiteStore(config.db_path)``.
            cipher: Symmetric cipher shared by vault and session.
            kdf: Password key derivation.
            clock: Time source for session expiry.
        """
        config = config or VaultConfig.from_env()
        owns_store = store is None
        if store is None:
            store = SQLiteStore(config.db_path)
        try:
            store.create_bucket(config.system_bucket)
            system = BucketRepository(store, config.system_bucket)
            config = load_config(system, base=config)
            # the stored config may name other buckets
            for bucket in (config.system_bucket, config.secrets_bucket):
                store.create_bucket(bucket)
        except VaultError:
            if owns_store:
                store.close()
            raise
        system = BucketRepository(store, config.system_bucket)

        cipher = cipher or AESGCMCipher()
        vault = Vault(cipher, load_salt(system))
        return cls(
            config=config,
            store=store,
            system=system,
            vault=vault,
            session=SessionManager(system, config, cipher, clock),
            secrets=EncryptedRepository(
                BucketRepository(store, config.secrets_bucket), vault
            ),
            cipher=cipher,
            kdf=kdf,
        )

    def __enter__(self) -> "VaultContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Lock the in-memory vault and close the store. The session survives."""
        self.vault.lock()
        self.store.close()

    def vault_exists(self) -> bool:
        return check_vault_exists(self.system)

    def is_unlocked(self) -> bool:
        return self.vault.is_unlocked() and self.session.is_valid()

    def install_vault(self, vault: Vault) -> None:
        """Swap in an unlocked vault and point the record store at it."""
        if vault is not self.vault:
            self.vault.lock()
        self.vault = vault
        self.secrets = EncryptedRepository(
            BucketRepository(self.store, self.config.secrets_bucket), vault
        )


def initialize_vault(ctx: VaultContext, password: str) -> None:
    """Create a new vault protected by ``password``.

    Stores the salt, the verification token and the current configuration.
    The vault is left locked.

    Raises:
        VaultAlreadyExists: If salt and verification token are both stored.
    """
    # a salt left by an interrupted initialization is overwritten
    if check_vault_exists(ctx.system):
        raise VaultAlreadyExists()

    salt = generate_salt()
    vault = unlock_with_key(ctx.cipher, salt, ctx.kdf(password, salt))
    try:
        token = vault.create_verification_token()
        ctx.system.put(SALT_KEY, salt)
        ctx.system.put(VERIFICATION_TOKEN_KEY, token.encode("ascii"))
        save_config(ctx.system, ctx.config)
    finally:
        vault.lock()
    ctx.install_vault(Vault(ctx.cipher, salt))
    logger.info("Vault initialized successfully")


def ensure_vault_unlocked(ctx: VaultContext, prompt: PasswordPrompt) -> Vault:
    """Unlock the context's vault, from the session cache or a fresh password.

    Flow:
        1. no vault → VaultNotFound
        2. valid session → cached key, activity refreshed
        3. otherwise → ``prompt()`` for the password and derive the key
        4. verify against the stored token; on failure lock, clear the
           session and re-raise
        5. a freshly verified password starts a new session

    Returns:
        The unlocked vault, also installed on ``ctx``.

    Raises:
        VaultNotFound, IncorrectPassword, VerificationCorrupted
    """
    if not ctx.vault_exists():
        raise VaultNotFound()
    salt = load_salt(ctx.system)

    create_session = False
    try:
        vault_key = ctx.session.get_cached_key()
        ctx.session.update_activity()
    except SessionError as err:
        if isinstance(err, (SessionCorrupted, SessionExpired)):
            logger.warning("Discarding session: %s", err)
            ctx.session.clear()
        else:
            logger.debug("No active session: %s", err)
        try:
            password = prompt()
        except BaseException:
            ctx.session.clear()
            raise
        vault_key = ctx.kdf(password, salt)
        create_session = True

    vault = unlock_with_key(ctx.cipher, salt, vault_key)
    try:
        verify_vault_password(ctx.system, vault)
    except VaultError as err:
        vault.lock()
        ctx.session.clear()
        logger.warning("Authentication failed: %s", err)
        raise

    ctx.install_vault(vault)
    if create_session:
        try:
            ctx.session.create_session(vault_key)
        except VaultError as err:
            logger.error("Failed to create session: %s", err)
    return vault


def lock_vault(ctx: VaultContext) -> None:
    """Clear the session and lock the in-memory vault."""
    ctx.session.clear()
    ctx.vault.lock()
    logger.info("Vault locked and session cleared")
