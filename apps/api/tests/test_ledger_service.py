"""Tests for the append-only security ledger."""

import json
import threading
from datetime import timedelta

import pytest

from trustline_api.auth.context import CallerContext
from trustline_api.errors import ExportCancelled, PermissionDeniedError, ValidationError
from trustline_api.ledger.service import LedgerService


@pytest.fixture
def ledger(db, clock):
    return LedgerService(db, clock=clock)


def _attempts(ledger, clock, tenant_id, count, **fields):
    records = []
    for i in range(count):
        records.append(
            ledger.append(
                "login_attempt",
                {
                    "email": f"user{i}@{tenant_id}.test",
                    "tenant_id": tenant_id,
                    "success": False,
                    "attempted_at": clock.now - timedelta(minutes=count - i),
                    **fields,
                },
            )
        )
    ledger.db.commit()
    return records


def test_append_defaults_timestamp_to_clock(ledger, clock):
    """Test that an attempt without attempted_at is stamped with the clock."""
    attempt = ledger.append("login_attempt", {"email": "a@example.com", "success": False})
    ledger.db.commit()

    assert attempt.id
    assert attempt.attempted_at == clock.now


def test_append_rejects_unknown_fields(ledger):
    """Test that extra keys are rejected instead of dropped."""
    with pytest.raises(ValidationError):
        ledger.append("login_attempt", {"email": "a@example.com", "success": True, "colour": "red"})


def test_append_rejects_unknown_kind(ledger):
    with pytest.raises(ValidationError):
        ledger.append("api_call", {})


def test_session_gets_default_expiry(ledger, clock):
    """Test that sessions without expires_at get the configured TTL."""
    session = ledger.append("session", {"user_id": "u1", "tenant_id": "tenant-a"})
    ledger.db.commit()

    assert session.is_active is True
    assert session.login_at == clock.now
    assert session.expires_at == clock.now + timedelta(days=7)
    assert session.logout_at is None


def test_session_expiry_must_follow_login(ledger, clock):
    with pytest.raises(ValidationError):
        ledger.append(
            "session",
            {"user_id": "u1", "login_at": clock.now, "expires_at": clock.now - timedelta(seconds=1)},
        )


def test_duplicate_session_id_rejected(ledger):
    ledger.append("session", {"id": "sess-1", "user_id": "u1"})
    ledger.db.commit()

    with pytest.raises(ValidationError):
        ledger.append("session", {"id": "sess-1", "user_id": "u1"})


def test_password_change_metadata_round_trip(ledger):
    change = ledger.append(
        "password_change",
        {"user_id": "u1", "change_type": "admin_reset", "metadata": {"ticket": "T-1"}},
    )
    ledger.db.commit()

    assert change.metadata_json == {"ticket": "T-1"}


def test_tenant_caller_cannot_widen_scope(ledger, clock, tenant_caller):
    """Test that a forged tenant_id filter is replaced by the caller's own tenant."""
    _attempts(ledger, clock, "tenant-a", 2)
    _attempts(ledger, clock, "tenant-b", 3)

    page = ledger.query(tenant_caller, "login_attempt", {"tenant_id": "tenant-b"})

    assert page.total == 2
    assert {a.tenant_id for a in page.items} == {"tenant-a"}


def test_platform_caller_sees_all_tenants(ledger, clock, platform_caller):
    _attempts(ledger, clock, "tenant-a", 2)
    _attempts(ledger, clock, "tenant-b", 3)

    assert ledger.query(platform_caller, "login_attempt").total == 5
    assert ledger.query(platform_caller, "login_attempt", {"tenant_id": "tenant-b"}).total == 3


def test_query_rejects_unknown_filter(ledger, platform_caller):
    with pytest.raises(ValidationError):
        ledger.query(platform_caller, "login_attempt", {"severity": "critical"})


def test_query_rejects_inverted_range(ledger, platform_caller, clock):
    with pytest.raises(ValidationError):
        ledger.query(platform_caller, "audit_log", {"start": clock.now, "end": clock.now - timedelta(hours=1)})


def test_query_requires_read_scope(ledger):
    caller = CallerContext(user_id="nobody", tenant_id="tenant-a", scopes=frozenset())
    with pytest.raises(PermissionDeniedError):
        ledger.query(caller, "login_attempt")


def test_tenant_scoped_caller_without_tenant_is_refused(ledger):
    caller = CallerContext(user_id="ops", scopes=frozenset({"ledger:read"}))
    with pytest.raises(PermissionDeniedError):
        ledger.query(caller, "session")


def test_query_orders_newest_first_and_paginates(ledger, clock, platform_caller):
    records = _attempts(ledger, clock, "tenant-a", 5)

    first = ledger.query(platform_caller, "login_attempt", pagination={"limit": 2})
    second = ledger.query(platform_caller, "login_attempt", pagination={"limit": 2, "offset": 2})

    assert first.total == 5
    assert [a.id for a in first.items] == [records[4].id, records[3].id]
    assert [a.id for a in second.items] == [records[2].id, records[1].id]


def test_query_oldest_first(ledger, clock, platform_caller):
    records = _attempts(ledger, clock, "tenant-a", 3)

    page = ledger.query(platform_caller, "login_attempt", pagination={"order": "oldest"})

    assert [a.id for a in page.items] == [r.id for r in records]


def test_query_filters_by_success_and_date(ledger, clock, platform_caller):
    _attempts(ledger, clock, "tenant-a", 3)
    ledger.append("login_attempt", {"email": "ok@tenant-a.test", "tenant_id": "tenant-a", "success": True})
    ledger.db.commit()

    succeeded = ledger.query(platform_caller, "login_attempt", {"success": "true"})
    recent = ledger.query(platform_caller, "login_attempt", {"start": clock.now - timedelta(minutes=2)})

    assert succeeded.total == 1
    assert recent.total == 3  # two failures within the range plus the success at clock.now


def test_audit_log_tag_filter(ledger, platform_caller):
    ledger.record_audit("LOGIN_ATTEMPT_FAILED", tags=["authentication", "security"])
    ledger.record_audit("SESSION_REVOKED", tags=["security", "session"])
    ledger.record_audit("CASE_NOTE", tags=["investigation"])
    ledger.db.commit()

    page = ledger.query(platform_caller, "audit_log", {"tags": ["session"]})
    both = ledger.query(platform_caller, "audit_log", {"tags": ["security"]})

    assert [e.action for e in page.items] == ["SESSION_REVOKED"]
    assert both.total == 2


def test_audit_tags_are_normalized(ledger):
    entry = ledger.record_audit("X", tags=["Security", "security ", "auth"])
    assert entry.tags == ["auth", "security"]


def test_iter_records_walks_every_page(ledger, clock, platform_caller):
    records = _attempts(ledger, clock, "tenant-a", 7)

    walked = list(ledger.iter_records(platform_caller, "login_attempt", page_size=3))
    limited = list(ledger.iter_records(platform_caller, "login_attempt", page_size=3, limit=4))

    assert [r.id for r in walked] == [r.id for r in records]
    assert [r.id for r in limited] == [r.id for r in records[:4]]


def test_iter_records_validates_before_iterating(ledger):
    caller = CallerContext(user_id="ops", scopes=frozenset({"ledger:read"}))
    with pytest.raises(PermissionDeniedError):
        ledger.iter_records(caller, "login_attempt")


def test_export_range_csv(ledger, clock, platform_caller):
    _attempts(ledger, clock, "tenant-a", 3)

    lines = "".join(ledger.export_range(platform_caller, "login_attempt", fmt="csv")).splitlines()

    assert lines[0].startswith("id,email,user_id,tenant_id")
    assert len(lines) == 4
    assert all(",false," in line for line in lines[1:])


def test_export_range_json(ledger, clock, platform_caller):
    _attempts(ledger, clock, "tenant-a", 3)

    body = json.loads("".join(ledger.export_range(platform_caller, "login_attempt", fmt="json")))

    assert len(body) == 3
    assert list(body[0])[:2] == ["id", "email"]
    assert body[0]["attempted_at"].endswith("Z")


def test_export_range_requires_export_scope(ledger):
    caller = CallerContext(user_id="ops", tenant_id="tenant-a", scopes=frozenset({"ledger:read"}))
    with pytest.raises(PermissionDeniedError):
        ledger.export_range(caller, "login_attempt")


def test_export_range_rejects_pdf(ledger, platform_caller):
    with pytest.raises(ValidationError):
        ledger.export_range(platform_caller, "login_attempt", fmt="pdf")


def test_export_range_cancellation(ledger, clock, platform_caller):
    _attempts(ledger, clock, "tenant-a", 3)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ExportCancelled):
        list(ledger.export_range(platform_caller, "login_attempt", fmt="csv", cancel_event=cancel))


def test_user_actions_span_tenants(ledger, platform_caller, tenant_caller):
    ledger.record_audit("A", user_id="u1", tenant_id="tenant-a")
    ledger.record_audit("B", user_id="u1", tenant_id="tenant-b")
    ledger.record_audit("C", user_id="u2", tenant_id="tenant-a")
    ledger.db.commit()

    page = ledger.get_user_actions(platform_caller, "u1")

    assert sorted(e.action for e in page.items) == ["A", "B"]
    with pytest.raises(PermissionDeniedError):
        ledger.get_user_actions(tenant_caller, "u1")
