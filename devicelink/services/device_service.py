"""Device management: list, rename and revoke a user's own credentials.

Every statement filters on user_id so one user can never address another
user's device row, whatever device id they send.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlmodel import Session, col, select

from devicelink.config import settings
from devicelink.models.credential import DeviceCredential
from devicelink.models.pairing import PairingRequest
from devicelink.services.errors import DeviceNotFound, InvalidDeviceName
from devicelink.services.token_service import DEFAULT_DEVICE_NAME, ValidationCache
from devicelink.utils.security import utcnow

logger = logging.getLogger(__name__)

MAX_DEVICE_NAME = 100


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    device_name: str
    issued_at: datetime
    expires_at: datetime
    last_used_at: datetime | None
    is_active: bool


def list_devices(session: Session, user_id: str) -> list[DeviceInfo]:
    """All credentials (live and expired) owned by the user, most recently used first."""
    now = utcnow()
    rows = session.exec(
        select(
            DeviceCredential.device_id,
            DeviceCredential.device_name,
            DeviceCredential.issued_at,
            DeviceCredential.expires_at,
            DeviceCredential.last_used_at,
            (col(DeviceCredential.expires_at) > now).label("is_active"),
        )
        .where(DeviceCredential.user_id == user_id)
        .order_by(col(DeviceCredential.last_used_at).desc(), col(DeviceCredential.id).desc())
    ).all()

    return [
        DeviceInfo(
            device_id=r.device_id,
            device_name=r.device_name or DEFAULT_DEVICE_NAME,
            issued_at=r.issued_at,
            expires_at=r.expires_at,
            last_used_at=r.last_used_at,
            is_active=bool(r.is_active),
        )
        for r in rows
    ]


def rename_device(
    session: Session,
    user_id: str,
    device_id: str,
    new_name: str,
    cache: ValidationCache | None = None,
) -> None:
    name = (new_name or "").strip()
    if not name or len(name) > MAX_DEVICE_NAME:
        raise InvalidDeviceName()

    result = session.exec(
        update(DeviceCredential)
        .where(DeviceCredential.user_id == user_id, DeviceCredential.device_id == device_id)
        .values(device_name=name, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if result.rowcount == 0:
        raise DeviceNotFound()
    if cache is not None:
        cache.evict_device(user_id, device_id)
    logger.info("Renamed device %s for user %s", device_id, user_id)


def revoke_device(
    session: Session,
    user_id: str,
    device_id: str,
    cache: ValidationCache | None = None,
) -> int:
    """Delete every credential row of one of the user's devices."""
    result = session.exec(
        delete(DeviceCredential)
        .where(DeviceCredential.user_id == user_id, DeviceCredential.device_id == device_id)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if result.rowcount == 0:
        raise DeviceNotFound()
    if cache is not None:
        cache.evict_device(user_id, device_id)
    logger.info("Revoked device %s for user %s (%d credentials)", device_id, user_id, result.rowcount)
    return result.rowcount


def purge_expired(session: Session, pairing_retention: timedelta | None = None) -> dict:
    """Delete expired credentials and pairing requests past their retention."""
    if pairing_retention is None:
        pairing_retention = timedelta(hours=settings.pairing_retention_hours)
    now = utcnow()

    credentials = session.exec(
        delete(DeviceCredential)
        .where(DeviceCredential.expires_at < now)
        .execution_options(synchronize_session=False)
    ).rowcount
    pairings = session.exec(
        delete(PairingRequest)
        .where(PairingRequest.expires_at < now - pairing_retention)
        .execution_options(synchronize_session=False)
    ).rowcount
    session.commit()

    if credentials or pairings:
        logger.info("Purged %d expired credentials, %d pairing requests", credentials, pairings)
    return {"credentials": credentials, "pairings": pairings}
