"""Device management API endpoints (web session)."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from devicelink.api.deps import WebUser, get_validation_cache, get_web_user
from devicelink.database import get_session
from devicelink.schemas.devices import DeviceListResponse, DeviceRenameRequest, DeviceResponse
from devicelink.schemas.pairing import OkResponse
from devicelink.services.device_service import list_devices, rename_device, revoke_device
from devicelink.services.errors import DeviceLinkError
from devicelink.services.token_service import ValidationCache

router = APIRouter(prefix="/user", tags=["devices"])


@router.get("/devices", response_model=DeviceListResponse)
def get_devices(
    user: WebUser = Depends(get_web_user),
    session: Session = Depends(get_session),
):
    """List all devices for the current user."""
    devices = list_devices(session, user.user_id)
    return DeviceListResponse(
        devices=[
            DeviceResponse(
                device_id=d.device_id,
                device_name=d.device_name,
                issued_at=d.issued_at,
                expires_at=d.expires_at,
                last_used_at=d.last_used_at,
                is_active=d.is_active,
            )
            for d in devices
        ]
    )


@router.patch("/devices/{device_id}", response_model=OkResponse)
def update_device(
    device_id: str,
    request: DeviceRenameRequest,
    user: WebUser = Depends(get_web_user),
    session: Session = Depends(get_session),
    cache: Optional[ValidationCache] = Depends(get_validation_cache),
):
    """Rename a device."""
    try:
        rename_device(session, user.user_id, device_id, request.device_name, cache=cache)
    except DeviceLinkError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return OkResponse()


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(
    device_id: str,
    user: WebUser = Depends(get_web_user),
    session: Session = Depends(get_session),
    cache: Optional[ValidationCache] = Depends(get_validation_cache),
):
    """Revoke (unpair) a device."""
    try:
        revoke_device(session, user.user_id, device_id, cache=cache)
    except DeviceLinkError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
