"""
Vault Configuration: validated settings and their persisted form.

Settings come from three places, later ones winning:
    defaults → environment (``COCONUT_*``) → ``config:data`` in the system bucket

Only ``auto_lock_secs`` is read by the session layer, and it is read live
from the config object on every check.

Security Note:
    The configuration holds no secrets and may be logged.
"""
import os
import logging
from pathlib import Path

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..exceptions import ConfigError, NotFound
from ..storage import BucketRepository

logger = logging.getLogger("coconut.vault")

CONFIG_DATA_KEY = "config:data"

# persisted name → field name
_STORED_FIELDS = {
    "dbPath": "db_path",
    "systemBucket": "system_bucket",
    "secretsBucket": "secrets_bucket",
}


def default_db_path() -> Path:
    try:
        home = Path.home()
    except RuntimeError:
        home = Path(".")
    return home / ".coconut" / "coconut.db"


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    db_path: Path = Field(default_factory=default_db_path)
    system_bucket: str = Field(default="system")
    secrets_bucket: str = Field(default="secrets")
    auto_lock_secs: int = Field(default=300, ge=0)

    model_config = {"validate_assignment": True}

    @field_validator("system_bucket", "secrets_bucket")
    @classmethod
    def validate_bucket(cls, v: str) -> str:
        """Bucket names must be non-empty."""
        if not v or not v.strip():
            raise ValueError("bucket name cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_distinct_buckets(self) -> "VaultConfig":
        """Secrets must never share a bucket with vault metadata."""
        if self.system_bucket == self.secrets_bucket:
            raise ValueError(
                f"system_bucket and secrets_bucket must differ "
                f"(both are {self.system_bucket!r})"
            )
        return self

    @property
    def auto_lock_disabled(self) -> bool:
        return self.auto_lock_secs == 0

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig from ``COCONUT_*`` environment variables.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigError: If a variable holds an invalid value.
        """
        values: dict = {}
        if "COCONUT_DB_PATH" in os.environ:
            values["db_path"] = os.environ["COCONUT_DB_PATH"]
        if "COCONUT_SYSTEM_BUCKET" in os.environ:
            values["system_bucket"] = os.environ["COCONUT_SYSTEM_BUCKET"]
        if "COCONUT_SECRETS_BUCKET" in os.environ:
            values["secrets_bucket"] = os.environ["COCONUT_SECRETS_BUCKET"]
        if "COCONUT_AUTO_LOCK_SECS" in os.environ:
            values["auto_lock_secs"] = os.environ["COCONUT_AUTO_LOCK_SECS"]
        try:
            return cls(**values)
        except ValidationError as err:
            raise ConfigError(f"invalid environment configuration: {err}") from err


def load_config(
    system_repo: BucketRepository, base: VaultConfig | None = None
) -> VaultConfig:
    """Load the persisted configuration, applying ``base`` (or defaults) when absent.

    A stored ``autoLockSecs`` always wins, so ``0`` survives a round trip;
    empty path and bucket names fall back to ``base``.

    Args:
        system_repo: Repository bound to the system bucket.
        base: Values used for anything not stored.

    Returns:
        Merged VaultConfig.

    Raises:
        ConfigError: If the stored document is malformed or invalid.
    """
    base = base or VaultConfig()
    try:
        data = system_repo.get(CONFIG_DATA_KEY)
    except NotFound:
        return base.model_copy()
    if not data:
        return base.model_copy()

    try:
        stored = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ConfigError(f"stored configuration is not valid JSON: {err}") from err
    if not isinstance(stored, dict):
        raise ConfigError("stored configuration must be a JSON object")

    values = base.model_dump()
    if "autoLockSecs" in stored:
        values["auto_lock_secs"] = stored["autoLockSecs"]
    for stored_name, field in _STORED_FIELDS.items():
        if stored.get(stored_name):
            values[field] = stored[stored_name]
    try:
        cfg = VaultConfig(**values)
    except ValidationError as err:
        raise ConfigError(f"stored configuration is invalid: {err}") from err
    logger.debug("Loaded configuration: auto_lock_secs=%d", cfg.auto_lock_secs)
    return cfg


def save_config(system_repo: BucketRepository, config: VaultConfig) -> None:
    """Persist the runtime-changeable configuration values."""
    payload = orjson.dumps({
        "autoLockSecs": config.auto_lock_secs,
        "dbPath": str(config.db_path),
        "systemBucket": config.system_bucket,
        "secretsBucket": config.secrets_bucket,
    })
    system_repo.put(CONFIG_DATA_KEY, payload)
    logger.debug("Saved configuration: auto_lock_secs=%d", config.auto_lock_secs)
