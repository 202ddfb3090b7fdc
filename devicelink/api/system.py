"""System & maintenance API endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from devicelink.api.deps import require_admin
from devicelink.database import get_session
from devicelink.schemas.devices import CleanupResponse
from devicelink.services.device_service import purge_expired

router = APIRouter(tags=["system"])


@router.get("/health")
def health():
    """Lightweight health check (no auth required)."""
    return {"status": "ok"}


@router.post("/admin/tokens/cleanup", response_model=CleanupResponse, dependencies=[Depends(require_admin)])
def cleanup_tokens(session: Session = Depends(get_session)):
    """Delete expired credentials and stale pairing requests now."""
    counts = purge_expired(session)
    return CleanupResponse(credentials=counts["credentials"], pairings=counts["pairings"])
