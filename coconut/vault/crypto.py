"""
Vault Crypto Core: Symmetric cipher and password key derivation.

- Cipher: AES-256-GCM, output ``base64-raw(nonce 12B | payload | tag 16B)``
- Key derivation: Argon2id(password, salt) → 32-byte key

Security Note:
    Never log plaintext, ciphertext or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import base64
import binascii
import secrets
import logging
from abc import ABC, abstractmethod

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import DecryptionFailed, EncryptionFailed

logger = logging.getLogger("coconut.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16

# Argon2id parameters
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 64 * 1024  # KiB
ARGON2_PARALLELISM = 4


def _b64encode(data: bytes) -> str:
    """Standard base64 alphabet, padding stripped."""
    return base64.b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.b64decode(padded, validate=True)


# ---------------------------------------------------------------------------
# Symmetric cipher
# ---------------------------------------------------------------------------

class CipherStrategy(ABC):
    """Authenticated encryption of text under a raw key."""

    @abstractmethod
    def encrypt(self, key: bytes, plaintext: str) -> str:
        """Encrypt ``plaintext``.

        Raises:
            EncryptionFailed: If the key is unusable.
        """

    @abstractmethod
    def decrypt(self, key: bytes, ciphertext: str) -> str:
        """Decrypt ``ciphertext``.

        Raises:
            DecryptionFailed: On authentication failure or malformed input.
        """


class AESGCMCipher(CipherStrategy):
    """AES-GCM with a random nonce prepended to every ciphertext.

    Accepts 16, 24 or 32 byte keys; the vault always uses 32.
    """

    def encrypt(self, key: bytes, plaintext: str) -> str:
        try:
            cipher = AESGCM(key)
        except (TypeError, ValueError) as err:
            raise EncryptionFailed(f"invalid key: {err}") from err
        nonce = secrets.token_bytes(NONCE_SIZE)
        ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return _b64encode(nonce + ct)

    def decrypt(self, key: bytes, ciphertext: str) -> str:
        try:
            data = _b64decode(ciphertext)
        except (binascii.Error, ValueError) as err:
            raise DecryptionFailed(f"malformed ciphertext: {err}") from err
        _min = NONCE_SIZE + TAG_SIZE
        if len(data) < _min:
            raise DecryptionFailed(
                f"ciphertext too short: {len(data)} bytes (minimum {_min})"
            )
        try:
            cipher = AESGCM(key)
        except (TypeError, ValueError) as err:
            raise DecryptionFailed(f"invalid key: {err}") from err
        nonce = data[:NONCE_SIZE]
        ct = data[NONCE_SIZE:]
        try:
            plaintext = cipher.decrypt(nonce, ct, None)
        except InvalidTag as err:
            raise DecryptionFailed("authentication failed") from err
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionFailed("plaintext is not valid UTF-8") from err


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes,
    *,
    time_cost: int = ARGON2_TIME_COST,
    memory_cost: int = ARGON2_MEMORY_COST,
    parallelism: int = ARGON2_PARALLELISM,
) -> bytes:
    """Derive a 32-byte vault key from the master password with Argon2id.

    Deterministic for identical inputs. Deliberately slow and memory hard;
    callers must not mark a vault unlocked until this returns.

    Args:
        password: Master password, used transiently and never stored.
        salt: Per-vault random salt.

    Returns:
        32-byte derived key.
    """
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=bytes(salt),
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=KEY_LENGTH,
        type=Type.ID,
    )


def generate_salt(size: int = SALT_SIZE) -> bytes:
    """Generate a random salt of at least 16 bytes."""
    if size < SALT_SIZE:
        raise ValueError(f"salt must be at least {SALT_SIZE} bytes, got {size}")
    return secrets.token_bytes(size)


def generate_key() -> bytes:
    """Generate a random 32-byte key (used for session keys)."""
    return secrets.token_bytes(KEY_LENGTH)
