"""Device token validation and rotation.

Validation runs on every device API call: one UPDATE ... RETURNING both
checks the hash/expiry and touches last_used_at. Rotation retires the
presented credential and inserts its replacement in one transaction, so a
concurrent validator sees either the old row live or the new one.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col

from devicelink.config import settings
from devicelink.models.credential import DeviceCredential
from devicelink.services.errors import CredentialConflict, InvalidToken
from devicelink.utils.security import (
    MIN_TOKEN_LENGTH,
    generate_device_token,
    hash_token,
    redact_token,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "Unknown Device"


@dataclass(frozen=True)
class DeviceIdentity:
    user_id: str
    device_id: str
    device_name: str
    user_email: str | None


@dataclass(frozen=True)
class RotatedToken:
    token: str
    expires_at: datetime
    device_id: str
    user_id: str


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; everything is stored as UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _well_formed(token: str | None) -> bool:
    return bool(token) and len(token) >= MIN_TOKEN_LENGTH


class ValidationCache:
    """Short-TTL read-through cache in front of validate_token.

    Keyed by token hash. Entries never outlive the credential they were
    read from. Create one per application and pass it in; a TTL of 0
    disables it.
    """

    def __init__(self, ttl_seconds: float = 0):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, DeviceIdentity]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, token_hash: str) -> DeviceIdentity | None:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(token_hash)
            if entry is None:
                return None
            deadline, identity = entry
            if time.monotonic() >= deadline:
                del self._entries[token_hash]
                return None
            return identity

    def put(self, token_hash: str, identity: DeviceIdentity, max_age: float | None = None) -> None:
        if not self.enabled:
            return
        age = self.ttl_seconds if max_age is None else min(self.ttl_seconds, max_age)
        if age <= 0:
            return
        with self._lock:
            self._entries[token_hash] = (time.monotonic() + age, identity)

    def evict(self, token_hash: str) -> None:
        with self._lock:
            self._entries.pop(token_hash, None)

    def evict_device(self, user_id: str, device_id: str) -> int:
        """Drop every cached entry belonging to one user's device."""
        with self._lock:
            stale = [
                h for h, (_, ident) in self._entries.items()
                if ident.user_id == user_id and ident.device_id == device_id
            ]
            for h in stale:
                del self._entries[h]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def validate_token(
    session: Session,
    token: str | None,
    cache: ValidationCache | None = None,
) -> DeviceIdentity | None:
    """Resolve a raw bearer token to its device identity, or None.

    Unknown, expired and malformed tokens are indistinguishable to the caller.
    """
    if not _well_formed(token):
        return None

    token_hash = hash_token(token)
    if cache is not None:
        cached = cache.get(token_hash)
        if cached is not None:
            return cached

    now = utcnow()
    stmt = (
        update(DeviceCredential)
        .where(
            DeviceCredential.token_hash == token_hash,
            DeviceCredential.expires_at > now,
            col(DeviceCredential.device_fingerprint).is_not(None),
        )
        .values(last_used_at=now, updated_at=now)
        .returning(
            DeviceCredential.user_id,
            DeviceCredential.device_id,
            DeviceCredential.device_name,
            DeviceCredential.user_email,
            DeviceCredential.expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    row = session.exec(stmt).first()
    session.commit()

    if row is None:
        return None

    identity = DeviceIdentity(
        user_id=row.user_id,
        device_id=row.device_id,
        device_name=row.device_name or DEFAULT_DEVICE_NAME,
        user_email=row.user_email,
    )
    if cache is not None:
        remaining = (_as_utc(row.expires_at) - now).total_seconds()
        cache.put(token_hash, identity, max_age=remaining)
    return identity


def rotate_token(
    session: Session,
    token: str | None,
    cache: ValidationCache | None = None,
) -> RotatedToken:
    """Replace a live token with a fresh one for the same device.

    Raises InvalidToken if the presented token is not live (including when
    a concurrent rotation already retired it).
    """
    if not _well_formed(token):
        raise InvalidToken()

    old_hash = hash_token(token)
    ttl = timedelta(hours=settings.device_token_ttl_hours)

    for attempt in range(2):
        now = utcnow()
        # The retire is the first statement so concurrent rotations queue on
        # the write lock. Only the first still sees a non-NULL fingerprint.
        current = session.exec(
            update(DeviceCredential)
            .where(
                DeviceCredential.token_hash == old_hash,
                DeviceCredential.expires_at > now,
                col(DeviceCredential.device_fingerprint).is_not(None),
            )
            .values(expires_at=now, updated_at=now)
            .returning(
                DeviceCredential.id,
                DeviceCredential.device_id,
                DeviceCredential.device_fingerprint,
                DeviceCredential.user_id,
                DeviceCredential.user_email,
                DeviceCredential.device_name,
            )
            .execution_options(synchronize_session=False)
        ).first()
        if current is None:
            session.rollback()
            raise InvalidToken()

        values = {
            "device_id": current.device_id,
            "device_fingerprint": current.device_fingerprint,
            "user_id": current.user_id,
            "user_email": current.user_email,
            "device_name": current.device_name,
        }
        new_token = generate_device_token()
        expires_at = now + ttl

        try:
            # The fingerprint moves to the replacement row.
            session.exec(
                update(DeviceCredential)
                .where(DeviceCredential.id == current.id)
                .values(device_fingerprint=None)
                .execution_options(synchronize_session=False)
            )
            session.exec(
                insert(DeviceCredential).values(
                    token_hash=hash_token(new_token),
                    issued_at=now,
                    expires_at=expires_at,
                    last_used_at=now,
                    updated_at=now,
                    **values,
                )
            )
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning("Token rotation conflict (attempt %d): %s", attempt + 1, e.orig)
            continue

        if cache is not None:
            cache.evict(old_hash)
        logger.info(
            "Rotated token %s -> %s for device %s",
            redact_token(token), redact_token(new_token), values["device_id"],
        )
        return RotatedToken(
            token=new_token,
            expires_at=expires_at,
            device_id=values["device_id"],
            user_id=values["user_id"],
        )

    raise CredentialConflict()
