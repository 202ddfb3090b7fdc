"""Device pairing business logic.

Register -> (user claims the code on the web) -> Claim -> Exchange.
The device polls Exchange until the code is claimed, then receives a
bearer token exactly once. All coordination happens in the database:
claims are a single conditional UPDATE and credentials are written with
an INSERT ... ON CONFLICT upsert keyed on (user_id, device_fingerprint).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from devicelink.config import settings
from devicelink.models.credential import DeviceCredential
from devicelink.models.pairing import PairingRequest
from devicelink.services.errors import (
    CredentialConflict,
    InvalidCode,
    InvalidFingerprint,
    InvalidOrExpiredCode,
    NotLinkedYet,
    PairingUnavailable,
)
from devicelink.services.token_service import DEFAULT_DEVICE_NAME, ValidationCache
from devicelink.utils.security import (
    fallback_fingerprint,
    generate_device_id,
    generate_device_token,
    generate_pairing_code,
    hash_token,
    is_valid_fingerprint,
    normalize_code,
    redact_token,
    utcnow,
)

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class Registration:
    device_id: str
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    device_id: str
    user_id: str


def clean_fingerprint(value: str | None) -> str | None:
    """Normalise an optional caller-supplied fingerprint; reject bad formats."""
    if value is None or not value.strip():
        return None
    value = value.strip().lower()
    if not is_valid_fingerprint(value):
        raise InvalidFingerprint()
    return value


def clean_device_name(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()[:100]
    return value or None


def register_device(
    session: Session,
    device_name: str | None = None,
    device_fingerprint: str | None = None,
) -> Registration:
    """Create a pairing request with a fresh device id and short code.

    A code collision retries with a new code instead of failing.
    """
    fingerprint = clean_fingerprint(device_fingerprint)
    device_id = generate_device_id()
    ttl = timedelta(seconds=settings.pairing_code_ttl_seconds)

    for _ in range(CODE_ATTEMPTS):
        now = utcnow()
        code = generate_pairing_code()
        stmt = insert(PairingRequest).values(
            code=code,
            device_id=device_id,
            device_fingerprint=fingerprint,
            device_name=clean_device_name(device_name),
            claimed=False,
            created_at=now,
            expires_at=now + ttl,
        )
        try:
            session.exec(stmt)
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info("Pairing code collision, regenerating")
            continue

        logger.info("Registered device %s", device_id)
        logger.debug("Pairing code %s issued for %s", code, device_id)
        return Registration(device_id=device_id, code=code, expires_at=now + ttl)

    raise PairingUnavailable()


def claim_pairing(
    session: Session,
    code: str,
    user_id: str,
    user_email: str | None = None,
) -> bool:
    """Attach the logged-in user to an unclaimed, unexpired code.

    Not found, already claimed and expired all raise the same
    InvalidOrExpiredCode so codes cannot be enumerated.
    """
    if not code or not code.strip() or not user_id:
        raise InvalidOrExpiredCode()

    now = utcnow()
    stmt = (
        update(PairingRequest)
        .where(
            PairingRequest.code == normalize_code(code),
            PairingRequest.claimed == False,  # noqa: E712
            PairingRequest.expires_at > now,
        )
        .values(claimed=True, user_id=user_id, user_email=user_email, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)
    session.commit()

    if result.rowcount != 1:
        raise InvalidOrExpiredCode()

    logger.info("Pairing claimed by user %s", user_id)
    return True


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")


def _upsert_credential(session: Session, values: dict) -> None:
    stmt = _dialect_insert(session)(DeviceCredential).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "device_fingerprint"],
        index_where=col(DeviceCredential.device_fingerprint).is_not(None),
        set_={
            "token_hash": stmt.excluded.token_hash,
            "device_id": stmt.excluded.device_id,
            "device_name": stmt.excluded.device_name,
            "user_email": stmt.excluded.user_email,
            "issued_at": stmt.excluded.issued_at,
            "expires_at": stmt.excluded.expires_at,
            "last_used_at": stmt.excluded.last_used_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    session.exec(stmt)


def exchange_code(
    session: Session,
    device_id: str,
    code: str,
    device_name: str | None = None,
    device_fingerprint: str | None = None,
    cache: ValidationCache | None = None,
) -> IssuedToken:
    """Trade a claimed pairing code for a new bearer token.

    Raises NotLinkedYet while the code is still waiting for a claim, and
    InvalidCode when polling can never succeed (unknown code, wrong device,
    expired). Calling again after success re-issues a token for the same
    credential row; the previous token stops validating and is evicted from
    the cache.
    """
    if not device_id or not code or not code.strip():
        raise InvalidCode()

    fingerprint = clean_fingerprint(device_fingerprint)
    now = utcnow()
    reg = session.exec(
        select(PairingRequest).where(
            PairingRequest.code == normalize_code(code),
            PairingRequest.device_id == device_id,
            PairingRequest.expires_at > now,
        )
    ).first()

    if not reg:
        raise InvalidCode()
    if not reg.claimed or not reg.user_id:
        raise NotLinkedYet()

    user_id = reg.user_id
    user_email = reg.user_email
    fingerprint = fingerprint or reg.device_fingerprint or fallback_fingerprint(device_id)
    name = clean_device_name(device_name) or reg.device_name or DEFAULT_DEVICE_NAME
    expires_at = now + timedelta(hours=settings.device_token_ttl_hours)

    # One retry: a hash collision or a concurrent exchange racing the upsert.
    for attempt in range(2):
        token = generate_device_token()
        try:
            superseded = session.exec(
                select(DeviceCredential.token_hash)
                .where(
                    DeviceCredential.user_id == user_id,
                    DeviceCredential.device_fingerprint == fingerprint,
                )
                .with_for_update()
            ).first()
            _upsert_credential(
                session,
                {
                    "token_hash": hash_token(token),
                    "device_id": device_id,
                    "device_fingerprint": fingerprint,
                    "user_id": user_id,
                    "user_email": user_email,
                    "device_name": name,
                    "issued_at": now,
                    "expires_at": expires_at,
                    "last_used_at": now,
                    "updated_at": now,
                },
            )
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning("Credential upsert conflict (attempt %d): %s", attempt + 1, e.orig)
            continue

        if cache is not None and superseded:
            cache.evict(superseded)
        logger.info("Issued token %s for device %s", redact_token(token), device_id)
        return IssuedToken(token=token, expires_at=expires_at, device_id=device_id, user_id=user_id)

    raise CredentialConflict()
