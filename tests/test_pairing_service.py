"""Registrar, Claimer and Exchange tests."""

import hashlib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from devicelink.database import engine
from devicelink.models.credential import DeviceCredential
from devicelink.models.pairing import PairingRequest
from devicelink.services import pairing_service
from devicelink.services.errors import (
    InvalidCode,
    InvalidFingerprint,
    InvalidOrExpiredCode,
    NotLinkedYet,
    PairingUnavailable,
)
from devicelink.services.pairing_service import claim_pairing, exchange_code, register_device
from devicelink.services.token_service import ValidationCache, validate_token
from devicelink.utils.security import hash_token

FP_A = "a" * 64
FP_B = "b" * 64


def _expire_pairing(session: Session, code: str) -> None:
    reg = session.get(PairingRequest, code)
    reg.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    session.add(reg)
    session.commit()


# --- Register ---

def test_register_creates_unclaimed_request(session):
    before = datetime.now(timezone.utc)
    reg = register_device(session)

    assert reg.device_id.startswith("dev_")
    assert len(reg.code) == 6
    ttl = (reg.expires_at - before).total_seconds()
    assert 599 <= ttl <= 601, f"unexpected TTL {ttl}"

    row = session.get(PairingRequest, reg.code)
    assert row is not None
    assert row.device_id == reg.device_id
    assert row.claimed is False
    assert row.user_id is None


def test_register_keeps_name_and_fingerprint(session):
    reg = register_device(session, device_name="  Sidebar  ", device_fingerprint=FP_A.upper())
    row = session.get(PairingRequest, reg.code)
    assert row.device_name == "Sidebar"
    assert row.device_fingerprint == FP_A


def test_register_rejects_bad_fingerprint(session):
    with pytest.raises(InvalidFingerprint):
        register_device(session, device_fingerprint="not-a-hash")
    assert session.exec(select(PairingRequest)).all() == []


def test_register_retries_on_code_collision(session, monkeypatch):
    codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    monkeypatch.setattr(pairing_service, "generate_pairing_code", lambda: next(codes))

    first = register_device(session)
    second = register_device(session)

    assert first.code == "AAAAAA"
    assert second.code == "BBBBBB"


def test_register_gives_up_after_repeated_collisions(session, monkeypatch):
    monkeypatch.setattr(pairing_service, "generate_pairing_code", lambda: "CCCCCC")
    register_device(session)
    with pytest.raises(PairingUnavailable):
        register_device(session)


# --- Claim ---

def test_claim_is_single_use(session):
    reg = register_device(session)
    assert claim_pairing(session, reg.code, "u1", "u1@example.com") is True

    row = session.get(PairingRequest, reg.code)
    assert row.claimed is True
    assert row.user_id == "u1"
    assert row.user_email == "u1@example.com"
    assert row.claimed_at is not None

    with pytest.raises(InvalidOrExpiredCode):
        claim_pairing(session, reg.code, "u2", "u2@example.com")
    session.refresh(row)
    assert row.user_id == "u1"


def test_claim_normalizes_code(session):
    reg = register_device(session)
    assert claim_pairing(session, f"  {reg.code.lower()} ", "u1")


def test_claim_errors_are_indistinguishable(session):
    expired = register_device(session)
    _expire_pairing(session, expired.code)
    claimed = register_device(session)
    claim_pairing(session, claimed.code, "u1")

    errors = []
    for code in ["ZZZZZZ", expired.code, claimed.code, ""]:
        with pytest.raises(InvalidOrExpiredCode) as exc:
            claim_pairing(session, code, "u2")
        errors.append(exc.value.detail)

    assert all(e == errors[0] for e in errors)


def test_concurrent_claims_only_one_wins(session):
    reg = register_device(session)

    def attempt(user_id: str) -> bool:
        with Session(engine) as s:
            try:
                return claim_pairing(s, reg.code, user_id)
            except InvalidOrExpiredCode:
                return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, [f"user{i}" for i in range(8)]))

    assert results.count(True) == 1
    winner = f"user{results.index(True)}"
    assert session.get(PairingRequest, reg.code).user_id == winner


# --- Exchange ---

def test_exchange_before_claim_is_not_linked_yet(session):
    reg = register_device(session)
    with pytest.raises(NotLinkedYet):
        exchange_code(session, reg.device_id, reg.code)
    assert session.exec(select(DeviceCredential)).all() == []


def test_exchange_rejects_doomed_requests(session):
    reg = register_device(session)
    claim_pairing(session, reg.code, "u1")

    with pytest.raises(InvalidCode):
        exchange_code(session, "dev_other", reg.code)
    with pytest.raises(InvalidCode):
        exchange_code(session, reg.device_id, "ZZZZZZ")
    with pytest.raises(InvalidCode):
        exchange_code(session, "", reg.code)

    _expire_pairing(session, reg.code)
    with pytest.raises(InvalidCode):
        exchange_code(session, reg.device_id, reg.code)


def test_exchange_stores_only_the_hash(session, pair):
    reg, issued = pair()

    rows = session.exec(select(DeviceCredential)).all()
    assert len(rows) == 1
    row = rows[0]
    assert row.token_hash == hash_token(issued.token)
    for value in row.model_dump().values():
        assert value != issued.token
    assert row.user_id == "u1"
    assert row.user_email == "u1@example.com"
    assert row.device_id == reg.device_id
    assert issued.user_id == "u1"


def test_exchange_fingerprint_fallback_hashes_device_id(session, pair):
    reg, _ = pair()
    row = session.exec(select(DeviceCredential)).one()
    assert row.device_fingerprint == hashlib.sha256(reg.device_id.encode()).hexdigest()


def test_exchange_prefers_caller_then_registration_fingerprint(session):
    reg = register_device(session, device_fingerprint=FP_A)
    claim_pairing(session, reg.code, "u1")
    exchange_code(session, reg.device_id, reg.code)
    assert session.exec(select(DeviceCredential)).one().device_fingerprint == FP_A

    reg2 = register_device(session, device_fingerprint=FP_A)
    claim_pairing(session, reg2.code, "u2")
    exchange_code(session, reg2.device_id, reg2.code, device_fingerprint=FP_B)
    row = session.exec(select(DeviceCredential).where(DeviceCredential.user_id == "u2")).one()
    assert row.device_fingerprint == FP_B


def test_exchange_device_name_defaults(session):
    reg = register_device(session, device_name="Chrome sidebar")
    claim_pairing(session, reg.code, "u1")
    exchange_code(session, reg.device_id, reg.code)
    assert session.exec(select(DeviceCredential)).one().device_name == "Chrome sidebar"

    reg2 = register_device(session)
    claim_pairing(session, reg2.code, "u2")
    exchange_code(session, reg2.device_id, reg2.code)
    row = session.exec(select(DeviceCredential).where(DeviceCredential.user_id == "u2")).one()
    assert row.device_name == "Unknown Device"


def test_repeated_exchange_reissues_for_same_row(session):
    reg = register_device(session)
    claim_pairing(session, reg.code, "u1")

    first = exchange_code(session, reg.device_id, reg.code, device_name="Laptop")
    second = exchange_code(session, reg.device_id, reg.code, device_name="Laptop")

    assert first.token != second.token
    rows = session.exec(select(DeviceCredential)).all()
    assert len(rows) == 1
    assert rows[0].token_hash == hash_token(second.token)
    assert validate_token(session, first.token) is None
    assert validate_token(session, second.token).device_id == reg.device_id


def test_repeated_exchange_evicts_superseded_token(session):
    reg = register_device(session)
    claim_pairing(session, reg.code, "u1")
    cache = ValidationCache(ttl_seconds=60)

    first = exchange_code(session, reg.device_id, reg.code, cache=cache)
    assert validate_token(session, first.token, cache=cache) is not None
    assert len(cache) == 1

    second = exchange_code(session, reg.device_id, reg.code, cache=cache)
    assert validate_token(session, first.token, cache=cache) is None
    assert validate_token(session, second.token, cache=cache) is not None


def test_concurrent_exchanges_leave_one_credential(session):
    reg = register_device(session, device_fingerprint=FP_A)
    claim_pairing(session, reg.code, "u1")

    def attempt(_) -> str:
        with Session(engine) as s:
            return exchange_code(s, reg.device_id, reg.code).token

    with ThreadPoolExecutor(max_workers=8) as pool:
        tokens = list(pool.map(attempt, range(8)))

    rows = session.exec(select(DeviceCredential)).all()
    assert len(rows) == 1
    assert rows[0].device_fingerprint == FP_A
    assert sum(validate_token(session, t) is not None for t in tokens) == 1


def test_exchange_fails_once_pairing_is_pruned(session):
    reg = register_device(session)
    claim_pairing(session, reg.code, "u1")
    exchange_code(session, reg.device_id, reg.code)

    session.delete(session.get(PairingRequest, reg.code))
    session.commit()

    with pytest.raises(InvalidCode):
        exchange_code(session, reg.device_id, reg.code)
    assert len(session.exec(select(DeviceCredential)).all()) == 1


def test_fingerprint_dedup_across_pairings(session, pair):
    reg1, t1 = pair(device_fingerprint=FP_A)
    reg2, t2 = pair(device_fingerprint=FP_A)

    rows = session.exec(select(DeviceCredential).where(DeviceCredential.user_id == "u1")).all()
    assert len(rows) == 1
    assert rows[0].device_id == reg2.device_id
    assert validate_token(session, t1.token) is None
    assert validate_token(session, t2.token) is not None


def test_same_fingerprint_different_users_do_not_collide(session, pair):
    pair(user_id="u1", device_fingerprint=FP_A)
    pair(user_id="u2", email="u2@example.com", device_fingerprint=FP_A)

    rows = session.exec(select(DeviceCredential)).all()
    assert sorted(r.user_id for r in rows) == ["u1", "u2"]
