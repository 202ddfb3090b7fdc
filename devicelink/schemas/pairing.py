"""Pairing and device-token request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

FINGERPRINT_PATTERN = r"^[0-9a-f]{64}$"


# --- Register ---

class RegisterRequest(BaseModel):
    device_name: Optional[str] = Field(default=None, max_length=100)
    device_fingerprint: Optional[str] = Field(default=None, pattern=FINGERPRINT_PATTERN)


class RegisterResponse(BaseModel):
    device_id: str
    code: str
    expires_at: datetime


# --- Claim (web) ---

class LinkRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("code must not be blank")
        return v


class OkResponse(BaseModel):
    ok: bool = True


# --- Exchange (device, polled) ---

class ExchangeRequest(BaseModel):
    device_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=16)
    device_name: Optional[str] = Field(default=None, max_length=100)
    device_fingerprint: Optional[str] = Field(default=None, pattern=FINGERPRINT_PATTERN)


class TokenResponse(BaseModel):
    token: str
    expires_at: datetime


# --- Validate ---

class PingResponse(BaseModel):
    ok: bool = True
    user_id: str
    device_id: str
    device_name: str
    user_email: Optional[str]
