"""
Record models stored by the vault.

``Secret`` is the credential record held (encrypted) in the secrets bucket.
``SessionRecord`` is the persisted half of a cached session; the other half,
the raw session key, is stored under a separate key.
"""
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_secret_id() -> str:
    return str(uuid.uuid4())


class Secret(BaseModel):
    """A credential record.

    ``id`` doubles as the storage key. Callers normally let the model
    generate it; the record store never assigns identity itself.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_secret_id)
    username: str = ""
    password: str = ""
    url: str = ""
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    def __repr__(self) -> str:
        # never echo the password
        return (
            f'<Secret id={self.id!r} username={self.username!r} '
            f'url={self.url!r}>'
        )

    __str__ = __repr__

    def touch(self) -> None:
        """Refresh the update timestamp."""
        self.updated_at = utcnow()


class SessionRecord(BaseModel):
    """Persisted session data.

    ``encrypted_key`` is ``base64(vault_key)`` encrypted under the session
    key, which lives in a different record.
    """

    unlocked_at: datetime
    last_activity_at: datetime
    timeout_seconds: int = Field(default=0, ge=0)
    encrypted_key: str

    @field_validator("unlocked_at", "last_activity_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
