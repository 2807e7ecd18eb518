"""Tests for session revocation and expiry."""

from datetime import timedelta

import pytest

from trustline_api.errors import NotFoundError, PermissionDeniedError
from trustline_api.ledger.service import LedgerService
from trustline_api.models import AuditLogEntry, UserSession
from trustline_api.sessions.registry import SessionRegistry


@pytest.fixture
def registry(db, clock):
    return SessionRegistry(db, clock=clock)


def _session(db, clock, session_id, user_id="u1", tenant_id="tenant-a", **fields):
    session = LedgerService(db, clock=clock).append(
        "session", {"id": session_id, "user_id": user_id, "tenant_id": tenant_id, **fields}
    )
    db.commit()
    return session


def test_revoke_sets_logout_and_audits(registry, db, clock, tenant_caller):
    """Test that revoking an active session records logout_at and an audit entry."""
    _session(db, clock, "s1")

    session = registry.revoke(tenant_caller, "s1")

    assert session.is_active is False
    assert session.logout_at == clock.now
    entries = db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_REVOKED").all()
    assert len(entries) == 1
    assert entries[0].resource_id == "s1"
    assert entries[0].details["actor"] == "ops-a"


def test_revoke_is_idempotent(registry, db, clock, tenant_caller):
    """Test that a second revoke leaves logout_at unchanged and writes no audit entry."""
    _session(db, clock, "s1")
    first = registry.revoke(tenant_caller, "s1")
    logout_at = first.logout_at

    clock.advance(minutes=5)
    second = registry.revoke(tenant_caller, "s1")

    assert second.logout_at == logout_at
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_REVOKED").count() == 1


def test_revoke_unknown_session(registry, tenant_caller):
    with pytest.raises(NotFoundError):
        registry.revoke(tenant_caller, "missing")


def test_revoke_other_tenant_session_is_not_found(registry, db, clock, other_tenant_caller):
    _session(db, clock, "s1", tenant_id="tenant-a")

    with pytest.raises(NotFoundError):
        registry.revoke(other_tenant_caller, "s1")
    assert db.get(UserSession, "s1").is_active is True


def test_revoke_requires_write_scope(registry, db, clock):
    from trustline_api.auth.context import CallerContext

    _session(db, clock, "s1")
    reader = CallerContext(user_id="ro", tenant_id="tenant-a", scopes=frozenset({"ledger:read"}))

    with pytest.raises(PermissionDeniedError):
        registry.revoke(reader, "s1")


def test_revoke_all_spares_excepted_session(registry, db, clock, tenant_caller):
    """Test revoke_all on three sessions except one revokes exactly two."""
    for session_id in ("s1", "s2", "s3"):
        _session(db, clock, session_id)
    _session(db, clock, "other-user", user_id="u2")

    count = registry.revoke_all(tenant_caller, "u1", except_session_id="s1")

    assert count == 2
    active = {s.id for s in db.query(UserSession).filter(UserSession.is_active.is_(True))}
    assert active == {"s1", "other-user"}

    entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_REVOKED").one()
    assert entry.details["count"] == 2
    assert entry.details["session_ids"] == ["s2", "s3"]


def test_revoke_all_with_nothing_active(registry, db, clock, tenant_caller):
    _session(db, clock, "s1")
    registry.revoke(tenant_caller, "s1")

    assert registry.revoke_all(tenant_caller, "u1") == 0


def _expired_session(db, clock, session_id, **fields):
    return _session(
        db,
        clock,
        session_id,
        login_at=clock.now - timedelta(hours=2),
        expires_at=clock.now - timedelta(hours=1),
        **fields,
    )


def test_revoke_all_skips_expired_sessions(registry, db, clock, tenant_caller):
    """Test that a flagged but expired session is expired, not counted as revoked."""
    for session_id in ("s1", "s2", "s3"):
        _session(db, clock, session_id)
    _expired_session(db, clock, "stale")

    count = registry.revoke_all(tenant_caller, "u1", except_session_id="s1")

    assert count == 2
    stale = db.get(UserSession, "stale")
    db.refresh(stale)
    assert stale.is_active is False
    assert stale.logout_at is None
    entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_REVOKED").one()
    assert entry.details["session_ids"] == ["s2", "s3"]


def test_revoke_expired_session_keeps_logout_empty(registry, db, clock, tenant_caller):
    _expired_session(db, clock, "stale")

    session = registry.revoke(tenant_caller, "stale")

    assert session.is_active is False
    assert session.logout_at is None
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_REVOKED").count() == 0


def test_revoke_all_stays_inside_caller_tenant(registry, db, clock, tenant_caller):
    _session(db, clock, "s1", tenant_id="tenant-a")
    _session(db, clock, "s2", tenant_id="tenant-b")

    assert registry.revoke_all(tenant_caller, "u1") == 1
    assert db.get(UserSession, "s2").is_active is True


def test_active_list_reconciles_expired_sessions(registry, db, clock, tenant_caller):
    """Test that an expired session is dropped from the active list without a logout time."""
    _session(db, clock, "short", expires_at=clock.now + timedelta(minutes=10))
    _session(db, clock, "long")

    clock.advance(minutes=11)
    page = registry.list_active_sessions(tenant_caller)

    assert [s.id for s in page.items] == ["long"]
    expired = db.get(UserSession, "short")
    assert expired.is_active is False
    assert expired.logout_at is None


def test_expire_stale_sessions_sweep(registry, db, clock):
    _session(db, clock, "s1", expires_at=clock.now + timedelta(hours=1))
    _session(db, clock, "s2", tenant_id="tenant-b", expires_at=clock.now + timedelta(hours=1))

    assert registry.expire_stale_sessions(now=clock.now + timedelta(hours=2)) == 2
    assert registry.expire_stale_sessions(now=clock.now + timedelta(hours=3)) == 0


def test_end_session_records_reason(registry, db, clock, tenant_caller):
    _session(db, clock, "s1")

    session = registry.end_session(tenant_caller, "s1", reason="timeout")

    assert session.is_active is False
    entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "SESSION_ENDED").one()
    assert entry.details["reason"] == "timeout"
    assert entry.severity == "info"


def test_login_history_includes_inactive(registry, db, clock, tenant_caller):
    _session(db, clock, "s1", login_at=clock.now - timedelta(hours=2))
    _session(db, clock, "s2", login_at=clock.now - timedelta(hours=1))
    registry.revoke(tenant_caller, "s1")

    page = registry.login_history(tenant_caller, "u1")

    assert [s.id for s in page.items] == ["s2", "s1"]
