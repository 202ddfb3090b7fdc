"""Security utilities: token hashing, fingerprints, pairing codes, session JWTs."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from devicelink.config import settings

# No 0/O, 1/I/L: codes are read off a screen and typed by hand.
PAIRING_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
TOKEN_BYTES = 32
MIN_TOKEN_LENGTH = 32


def utcnow() -> datetime:
    """Timezone-aware current time; all stored timestamps are UTC."""
    return datetime.now(timezone.utc)


# --- Hashing ---

def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_token(token: str) -> str:
    """Hash a raw device token for storage and lookup."""
    return sha256_hex(token)


def fallback_fingerprint(device_id: str) -> str:
    """Deterministic fingerprint for clients that never sent one."""
    return sha256_hex(device_id)


def is_valid_fingerprint(value: str) -> bool:
    return len(value) == 64 and all(c in "0123456789abcdef" for c in value)


# --- Generators ---

def generate_device_token() -> str:
    """Generate a new bearer token (256 bits of entropy)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_device_id() -> str:
    return f"dev_{secrets.token_hex(16)}"


def generate_pairing_code(length: int | None = None) -> str:
    length = length or settings.pairing_code_length
    return "".join(secrets.choice(PAIRING_CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def redact_token(token: str, *, show: int = 6) -> str:
    """Return a safe-to-log token preview."""
    t = str(token or "")
    if len(t) <= show * 2:
        return "***"
    return f"{t[:show]}***"


# --- Web session JWT ---

def create_session_token(user_id: str, email: str | None = None) -> str:
    expire = utcnow() + timedelta(minutes=settings.session_token_expire_minutes)
    payload = {
        "sub": user_id,
        "email": email,
        "exp": expire,
        "type": "session",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and validate a session JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
