"""Vault: key lifecycle, session caching and encrypted records.

Security Note (Threat Model):
    While the vault is unlocked its key lives in process memory, and a
    session keeps a wrapped copy in the store. Anyone able to read both
    ``session:data`` and ``session:key`` (or to run code in the process)
    can recover the vault key. This is an accepted limitation.
"""

from .vault import Vault, check_vault_exists, unlock_with_key, verify_vault_password
from .session import SessionManager
from .repository import EncryptedRepository
from .crypto import AESGCMCipher, CipherStrategy, derive_key, generate_salt
from .config import VaultConfig, load_config, save_config

__all__ = [
    "Vault",
    "check_vault_exists",
    "unlock_with_key",
    "verify_vault_password",
    "SessionManager",
    "EncryptedRepository",
    "AESGCMCipher",
    "CipherStrategy",
    "derive_key",
    "generate_salt",
    "VaultConfig",
    "load_config",
    "save_config",
]
