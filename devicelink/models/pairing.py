"""Pairing request model."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class PairingRequest(SQLModel, table=True):
    __tablename__ = "pairing_requests"

    code: str = Field(primary_key=True, max_length=16)
    device_id: str = Field(index=True)
    device_fingerprint: Optional[str] = Field(default=None, max_length=64)
    device_name: Optional[str] = Field(default=None, max_length=100)
    claimed: bool = Field(default=False)
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = Field(index=True)
