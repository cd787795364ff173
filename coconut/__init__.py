"""Coconut: a local secrets vault unlocked by a single master password."""
from .version import __version__
from .models import Secret
from .context import (
    VaultContext,
    initialize_vault,
    ensure_vault_unlocked,
    lock_vault,
)

__all__ = [
    "__version__",
    "Secret",
    "VaultContext",
    "initialize_vault",
    "ensure_vault_unlocked",
    "lock_vault",
]
