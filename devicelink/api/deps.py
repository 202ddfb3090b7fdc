"""Common API dependencies: web session user, device identity, admin guard."""

import secrets
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from devicelink.config import settings
from devicelink.database import get_session
from devicelink.services.errors import InvalidToken
from devicelink.services.token_service import DeviceIdentity, ValidationCache, validate_token
from devicelink.utils.security import decode_session_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class WebUser:
    user_id: str
    email: Optional[str]


def get_validation_cache(request: Request) -> Optional[ValidationCache]:
    return getattr(request.app.state, "validation_cache", None)


def get_web_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> WebUser:
    """Extract the logged-in user from the web session JWT."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    try:
        payload = decode_session_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    if payload.get("type") != "session" or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    return WebUser(user_id=payload["sub"], email=payload.get("email"))


def get_device_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Raw device bearer token from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=InvalidToken().detail)
    return credentials.credentials


def get_current_device(
    token: str = Depends(get_device_token),
    session: Session = Depends(get_session),
    cache: Optional[ValidationCache] = Depends(get_validation_cache),
) -> DeviceIdentity:
    """Validate the device bearer token on every device API call."""
    identity = validate_token(session, token, cache=cache)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=InvalidToken().detail)
    return identity


def require_admin(x_admin_token: str = Header(default="")) -> None:
    """Guard for maintenance endpoints. Disabled unless an admin token is configured."""
    expected = settings.admin_token.encode()
    if not expected or not secrets.compare_digest(x_admin_token.encode(), expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
