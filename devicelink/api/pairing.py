"""Device pairing & token API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from devicelink.api.deps import (
    WebUser,
    get_current_device,
    get_device_token,
    get_validation_cache,
    get_web_user,
)
from devicelink.database import get_session
from devicelink.schemas.pairing import (
    ExchangeRequest,
    LinkRequest,
    OkResponse,
    PingResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
)
from devicelink.services.errors import DeviceLinkError
from devicelink.services.pairing_service import claim_pairing, exchange_code, register_device
from devicelink.services.token_service import DeviceIdentity, ValidationCache, rotate_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pairing"])


def _http_error(e: DeviceLinkError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/devices/register", response_model=RegisterResponse)
def register(
    request: Optional[RegisterRequest] = None,
    session: Session = Depends(get_session),
):
    """Start pairing: returns a device id and a short code to type on the web."""
    request = request or RegisterRequest()
    try:
        reg = register_device(
            session,
            device_name=request.device_name,
            device_fingerprint=request.device_fingerprint,
        )
    except DeviceLinkError as e:
        raise _http_error(e)
    return RegisterResponse(device_id=reg.device_id, code=reg.code, expires_at=reg.expires_at)


@router.post("/devices/link", response_model=OkResponse)
def link(
    request: LinkRequest,
    user: WebUser = Depends(get_web_user),
    session: Session = Depends(get_session),
):
    """Claim a pairing code for the logged-in web user."""
    try:
        claim_pairing(session, request.code, user.user_id, user.email)
    except DeviceLinkError as e:
        raise _http_error(e)
    return OkResponse()


@router.post("/devices/exchange", response_model=TokenResponse)
def exchange(
    request: ExchangeRequest,
    session: Session = Depends(get_session),
    cache: Optional[ValidationCache] = Depends(get_validation_cache),
):
    """Polled by the device until its code is claimed (425 while waiting)."""
    try:
        issued = exchange_code(
            session,
            device_id=request.device_id,
            code=request.code,
            device_name=request.device_name,
            device_fingerprint=request.device_fingerprint,
            cache=cache,
        )
    except DeviceLinkError as e:
        raise _http_error(e)
    return TokenResponse(token=issued.token, expires_at=issued.expires_at)


@router.post("/devices/refresh", response_model=TokenResponse)
def refresh(
    token: str = Depends(get_device_token),
    session: Session = Depends(get_session),
    cache: Optional[ValidationCache] = Depends(get_validation_cache),
):
    """Rotate the presented device token."""
    try:
        rotated = rotate_token(session, token, cache=cache)
    except DeviceLinkError as e:
        raise _http_error(e)
    return TokenResponse(token=rotated.token, expires_at=rotated.expires_at)


@router.get("/protected/ping", response_model=PingResponse)
def protected_ping(device: DeviceIdentity = Depends(get_current_device)):
    """Device-authenticated echo of the caller's identity."""
    return PingResponse(
        user_id=device.user_id,
        device_id=device.device_id,
        device_name=device.device_name,
        user_email=device.user_email,
    )
