"""
Vault: lock-gated encryption boundary and password verification.

The vault holds the derived key only while unlocked. Whether a key is the
*right* one is decided separately, by decrypting the verification token that
was encrypted once when the vault was created; the master password itself is
never stored or compared.

Security Note:
    Python cannot guarantee that no copy of the key survives elsewhere in
    memory; ``lock()`` zeroes the buffer the vault owns. Never log key
    material or decrypted values.
"""
import hmac
import logging
import threading

from .crypto import KEY_LENGTH, AESGCMCipher, CipherStrategy
from ..exceptions import (
    IncorrectPassword,
    NotFound,
    VaultLocked,
    VaultNotFound,
    VerificationCorrupted,
    DecryptionFailed,
)
from ..storage import BucketRepository

logger = logging.getLogger("coconut.vault")

SALT_KEY = "salt"
VERIFICATION_TOKEN_KEY = "vault_verification"

# Known plaintext encrypted under the vault key at creation time.
VERIFICATION_TOKEN_VALUE = "coconut-vault-v1-verification"


class Vault:
    """Holds the vault key and gates encrypt/decrypt behind the lock state.

    All state changes happen under a re-entrant lock, so ``lock()`` from one
    thread cannot race an ``encrypt()`` running in another.
    """

    def __init__(self, cipher: CipherStrategy | None = None, salt: bytes | None = None):
        self._cipher = cipher or AESGCMCipher()
        self._salt = salt
        self._key: bytearray | None = None
        self._unlocked = False
        self._mutex = threading.RLock()

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked() else "locked"
        return f'<Vault [{state}]>'

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, *exc) -> None:
        self.lock()

    @property
    def salt(self) -> bytes | None:
        return self._salt

    @property
    def cipher(self) -> CipherStrategy:
        return self._cipher

    # ------------------------------------------------------------------
    # Lock state
    # ------------------------------------------------------------------

    def unlock(self, key: bytes) -> None:
        """Install ``key`` and mark the vault unlocked.

        The key is not checked against the verification token here; see
        ``verify_password``. A previously installed key is not zeroed, call
        ``lock()`` first when replacing one.

        Raises:
            ValueError: If ``key`` is not exactly 32 bytes.
        """
        if len(key) != KEY_LENGTH:
            raise ValueError(
                f"vault key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
            )
        with self._mutex:
            self._key = bytearray(key)
            self._unlocked = True

    def lock(self) -> None:
        """Mark the vault locked and overwrite the held key with zeros.

        Idempotent.
        """
        with self._mutex:
            self._unlocked = False
            if self._key is not None:
                for i in range(len(self._key)):
                    self._key[i] = 0
            self._key = None

    def is_unlocked(self) -> bool:
        with self._mutex:
            return self._unlocked

    # ------------------------------------------------------------------
    # Encryption boundary
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> str:
        """Encrypt under the held key.

        Raises:
            VaultLocked: If the vault is locked.
            EncryptionFailed: If the cipher rejects the key.
        """
        with self._mutex:
            if not self._unlocked:
                raise VaultLocked()
            return self._cipher.encrypt(self._key, plaintext)

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt under the held key.

        Raises:
            VaultLocked: If the vault is locked.
            DecryptionFailed: On authentication failure or malformed input.
        """
        with self._mutex:
            if not self._unlocked:
                raise VaultLocked()
            return self._cipher.decrypt(self._key, ciphertext)

    # ------------------------------------------------------------------
    # Verification token
    # ------------------------------------------------------------------

    def create_verification_token(self) -> str:
        """Encrypt the verification constant. Called once, at vault creation."""
        with self._mutex:
            if not self._unlocked:
                raise VaultLocked(
                    "vault must be unlocked to create verification token"
                )
            return self.encrypt(VERIFICATION_TOKEN_VALUE)

    def verify_password(self, encrypted_token: str) -> None:
        """Check that the held key decrypts the stored verification token.

        Raises:
            VaultLocked: If the vault is locked.
            IncorrectPassword: If the token does not decrypt (wrong key).
            VerificationCorrupted: If it decrypts to anything but the constant.
        """
        with self._mutex:
            if not self._unlocked:
                raise VaultLocked("vault must be unlocked to verify password")
            try:
                decrypted = self.decrypt(encrypted_token)
            except DecryptionFailed as err:
                raise IncorrectPassword() from err
        if not hmac.compare_digest(
            decrypted.encode("utf-8"), VERIFICATION_TOKEN_VALUE.encode("utf-8")
        ):
            raise VerificationCorrupted()


# ---------------------------------------------------------------------------
# Vault metadata in the system bucket
# ---------------------------------------------------------------------------

def load_salt(system_repo: BucketRepository) -> bytes | None:
    """Return the stored salt, or None if the vault was never initialized."""
    try:
        salt = system_repo.get(SALT_KEY)
    except NotFound:
        return None
    return salt or None


def check_vault_exists(system_repo: BucketRepository) -> bool:
    """A vault exists if and only if both salt and verification token are stored."""
    return system_repo.exists(SALT_KEY) and system_repo.exists(VERIFICATION_TOKEN_KEY)


def unlock_with_key(
    cipher: CipherStrategy | None, salt: bytes | None, key: bytes
) -> Vault:
    """Create a vault and unlock it, independent of how the key was obtained."""
    vault = Vault(cipher, salt)
    vault.unlock(key)
    return vault


def verify_vault_password(system_repo: BucketRepository, vault: Vault) -> None:
    """Verify ``vault``'s key against the stored verification token.

    Raises:
        VaultNotFound: If no verification token is stored.
        IncorrectPassword: If the key is wrong.
        VerificationCorrupted: If the token content does not match.
    """
    try:
        token = system_repo.get(VERIFICATION_TOKEN_KEY)
    except NotFound as err:
        raise VaultNotFound("vault verification token is missing") from err
    vault.verify_password(token.decode("ascii", errors="replace"))
