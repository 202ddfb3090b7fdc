"""Shared test setup: isolated data dir, fresh tables per test, pairing helpers."""

import os
import tempfile

# Setup environment for testing (before any devicelink import)
os.environ["DEVICELINK_DATA_DIR"] = tempfile.mkdtemp()
os.environ["DEVICELINK_DB_PATH"] = os.path.join(os.environ["DEVICELINK_DATA_DIR"], "test.db")
os.environ["DEVICELINK_CLEANUP_INTERVAL_SECONDS"] = "0"
os.environ["DEVICELINK_ADMIN_TOKEN"] = "test-admin-token"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from devicelink.database import engine
from devicelink.main import app
from devicelink.services.pairing_service import claim_pairing, exchange_code, register_device
from devicelink.utils.security import create_session_token


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def web_headers():
    """Authorization headers for a logged-in web user."""

    def make(user_id: str = "u1", email: str | None = None) -> dict:
        token = create_session_token(user_id, email or f"{user_id}@example.com")
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def pair(session):
    """Run register -> claim -> exchange and return (registration, issued token)."""

    def run(
        user_id: str = "u1",
        email: str | None = "u1@example.com",
        device_name: str | None = None,
        device_fingerprint: str | None = None,
    ):
        reg = register_device(session, device_name=device_name)
        claim_pairing(session, reg.code, user_id, email)
        issued = exchange_code(
            session,
            device_id=reg.device_id,
            code=reg.code,
            device_fingerprint=device_fingerprint,
        )
        return reg, issued

    return run
