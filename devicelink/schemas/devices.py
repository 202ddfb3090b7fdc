"""Device management schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DeviceResponse(BaseModel):
    device_id: str
    device_name: str
    issued_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime]
    is_active: bool


class DeviceListResponse(BaseModel):
    devices: list[DeviceResponse]


class DeviceRenameRequest(BaseModel):
    device_name: str = Field(min_length=1, max_length=100)


class CleanupResponse(BaseModel):
    ok: bool = True
    credentials: int
    pairings: int
