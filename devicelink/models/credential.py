"""Device credential model.

Only the SHA-256 hash of a bearer token is stored. A row is live while
``expires_at`` is in the future and its fingerprint is set; rotation
retires a row by expiring it and clearing the fingerprint.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


class DeviceCredential(SQLModel, table=True):
    __tablename__ = "device_credentials"
    __table_args__ = (
        Index("ix_device_credentials_hash_expiry", "token_hash", "expires_at"),
        # Retired (rotated-out) rows carry a NULL fingerprint.
        Index(
            "uq_device_credentials_user_fingerprint",
            "user_id",
            "device_fingerprint",
            unique=True,
            sqlite_where=text("device_fingerprint IS NOT NULL"),
            postgresql_where=text("device_fingerprint IS NOT NULL"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    token_hash: str = Field(unique=True, max_length=64)
    device_id: str = Field(index=True)
    device_fingerprint: Optional[str] = Field(default=None, max_length=64)
    user_id: str = Field(index=True)
    user_email: Optional[str] = None
    device_name: Optional[str] = Field(default=None, max_length=100)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
    last_used_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
