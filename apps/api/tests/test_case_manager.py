"""Tests for investigation case workflow."""

import pytest
from sqlalchemy import insert

from trustline_api.errors import (
    ConcurrentModificationError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from trustline_api.investigations.service import CaseManager
from trustline_api.investigations.states import allowed_targets, validate_transition
from trustline_api.ledger.service import LedgerService
from trustline_api.models import AuditLogEntry, CaseEvidence, InvestigationCase
from trustline_api.notifications.service import NotificationService


@pytest.fixture
def manager(db, clock):
    return CaseManager(db, clock=clock, notifier=NotificationService(url="", secret=""))


def _open_case(manager, caller, **fields):
    payload = {"title": "Credential stuffing against tenant-a", "case_type": "security", **fields}
    return manager.create(caller, payload)


def _resolve(manager, caller, case, **fields):
    manager.update_status(caller, case.id, {"status": "investigating"})
    return manager.update_status(
        caller, case.id, {"status": "resolved", "resolution": "Password reset forced", **fields}
    )


def test_create_applies_defaults(manager, platform_caller, clock):
    """Test a new case is open, medium priority and numbered."""
    case = _open_case(manager, platform_caller, tags=["Stuffing", "stuffing", "auth"])

    assert case.status == "open"
    assert case.priority == "medium"
    assert case.version == 1
    assert case.opened_at == clock.now
    assert case.created_by == "admin-1"
    assert case.tags == ["auth", "stuffing"]
    assert case.case_number == "INV-20260302-000001"


def test_case_numbers_increase(manager, platform_caller, clock):
    first = _open_case(manager, platform_caller)
    clock.advance(days=1)
    second = _open_case(manager, platform_caller)

    assert first.case_number == "INV-20260302-000001"
    assert second.case_number == "INV-20260303-000002"


def test_create_rejects_blank_title(manager, platform_caller):
    with pytest.raises(ValidationError):
        manager.create(platform_caller, {"title": "   ", "case_type": "security"})


def test_create_rejects_unknown_case_type(manager, platform_caller):
    with pytest.raises(ValidationError):
        manager.create(platform_caller, {"title": "x", "case_type": "fraud"})


def test_tenant_callers_cannot_manage_cases(manager, tenant_caller):
    with pytest.raises(PermissionDeniedError):
        _open_case(manager, tenant_caller)


def test_create_writes_audit_entry(manager, platform_caller, db):
    case = _open_case(manager, platform_caller)

    entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "INVESTIGATION_CASE_CREATED").one()
    assert entry.resource_id == case.id
    assert entry.details["case_number"] == case.case_number


def test_full_lifecycle_stamps_each_step(manager, platform_caller, clock):
    case = _open_case(manager, platform_caller)

    clock.advance(hours=1)
    case = manager.update_status(platform_caller, case.id, {"status": "investigating", "assigned_to": "analyst-7"})
    assert case.investigated_at == clock.now
    assert case.assigned_to == "analyst-7"

    clock.advance(hours=1)
    case = manager.update_status(
        platform_caller, case.id, {"status": "resolved", "resolution": "Attacker IPs blocked"}
    )
    assert case.resolved_at == clock.now
    assert case.resolved_by == "admin-1"

    clock.advance(hours=1)
    case = manager.update_status(platform_caller, case.id, {"status": "closed"})
    assert case.closed_at == clock.now
    assert case.status == "closed"
    assert case.version == 4


def test_reopening_a_resolved_case_clears_resolution(manager, platform_caller):
    case = _open_case(manager, platform_caller)
    _resolve(manager, platform_caller, case, resolution_notes="n/a")

    case = manager.update_status(platform_caller, case.id, {"status": "investigating"})

    assert case.status == "investigating"
    assert case.resolved_at is None
    assert case.resolution is None
    assert case.resolution_notes is None
    assert case.resolved_by is None


def test_back_to_open_clears_investigated_at(manager, platform_caller):
    case = _open_case(manager, platform_caller)
    manager.update_status(platform_caller, case.id, {"status": "investigating"})

    case = manager.update_status(platform_caller, case.id, {"status": "open"})

    assert case.investigated_at is None


def test_closed_is_terminal(manager, platform_caller):
    """Test that a closed case cannot go back to investigating."""
    case = _open_case(manager, platform_caller)
    _resolve(manager, platform_caller, case)
    manager.update_status(platform_caller, case.id, {"status": "closed"})

    with pytest.raises(InvalidStateTransition):
        manager.update_status(platform_caller, case.id, {"status": "investigating"})


@pytest.mark.parametrize(
    "payload",
    [
        {"status": "resolved"},
        {"status": "open", "expected_version": 1},
        {"status": "closed"},
    ],
)
def test_closed_case_rejects_every_update_as_transition(manager, platform_caller, db, payload):
    """Test that a closed case reports InvalidStateTransition before any other check."""
    case = _open_case(manager, platform_caller)
    _resolve(manager, platform_caller, case)
    manager.update_status(platform_caller, case.id, {"status": "closed"})

    with pytest.raises(InvalidStateTransition):
        manager.update_status(platform_caller, case.id, payload)

    closed = db.get(InvestigationCase, case.id)
    assert closed.status == "closed"
    assert closed.version == 4


def test_cannot_skip_investigation(manager, platform_caller):
    case = _open_case(manager, platform_caller)

    with pytest.raises(InvalidStateTransition):
        manager.update_status(platform_caller, case.id, {"status": "closed"})


def test_resolve_requires_resolution(manager, platform_caller):
    case = _open_case(manager, platform_caller)
    manager.update_status(platform_caller, case.id, {"status": "investigating"})

    with pytest.raises(ValidationError):
        manager.update_status(platform_caller, case.id, {"status": "resolved", "resolution": "  "})


def test_resolve_without_resolution_from_open_is_validation_error(manager, platform_caller):
    case = _open_case(manager, platform_caller)

    with pytest.raises(ValidationError):
        manager.update_status(platform_caller, case.id, {"status": "resolved"})


def test_stale_version_is_rejected(manager, platform_caller, db):
    """Test that the loser of a concurrent update gets ConcurrentModificationError."""
    case = _open_case(manager, platform_caller)
    manager.update_status(platform_caller, case.id, {"status": "investigating", "expected_version": 1})

    with pytest.raises(ConcurrentModificationError):
        manager.update_status(platform_caller, case.id, {"status": "open", "expected_version": 1})

    assert db.get(InvestigationCase, case.id).status == "investigating"


def test_concurrent_writer_loses_race(manager, platform_caller, db):
    """Test that a case changed between read and update is not overwritten."""
    case = _open_case(manager, platform_caller)
    real_get = manager._get

    def get_then_race(case_id):
        loaded = real_get(case_id)
        assert loaded.version == 1
        # Another writer moves the case after we read it
        db.query(InvestigationCase).filter(InvestigationCase.id == case_id).update(
            {"status": "investigating", "version": 2}, synchronize_session=False
        )
        return loaded

    manager._get = get_then_race

    with pytest.raises(ConcurrentModificationError):
        manager.update_status(platform_caller, case.id, {"status": "investigating"})


def test_status_change_is_audited(manager, platform_caller, db):
    case = _open_case(manager, platform_caller)
    manager.update_status(platform_caller, case.id, {"status": "investigating"})

    entry = (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.action == "INVESTIGATION_CASE_STATUS_CHANGED")
        .one()
    )
    assert entry.details["from_status"] == "open"
    assert entry.details["to_status"] == "investigating"


def test_update_unknown_case(manager, platform_caller):
    with pytest.raises(NotFoundError):
        manager.update_status(platform_caller, "missing", {"status": "investigating"})


def test_notes_keep_order_and_closed_cases_only_take_plain_notes(manager, platform_caller, clock):
    case = _open_case(manager, platform_caller)
    manager.add_note(platform_caller, case.id, {"note": "first", "note_type": "finding"})
    clock.advance(minutes=1)
    _resolve(manager, platform_caller, case)
    manager.update_status(platform_caller, case.id, {"status": "closed"})
    clock.advance(minutes=1)

    late = manager.add_note(platform_caller, case.id, {"note": "follow-up", "note_type": "action"})

    assert late.note_type == "note"
    assert late.metadata_json["requested_note_type"] == "action"
    detail = manager.get_case(platform_caller, case.id)
    assert [n.note for n in detail.notes] == ["first", "follow-up"]
    assert detail.case.status == "closed"


def test_add_evidence_is_idempotent(manager, platform_caller, db, clock):
    """Test that linking the same record twice returns the original link."""
    case = _open_case(manager, platform_caller)
    attempt = LedgerService(db, clock=clock).append("login_attempt", {"email": "a@b.c", "success": False})
    db.commit()

    first = manager.add_evidence(
        platform_caller, case.id, {"evidence_type": "login_attempt", "evidence_id": attempt.id}
    )
    second = manager.add_evidence(
        platform_caller, case.id, {"evidence_type": "login_attempt", "evidence_id": attempt.id}
    )

    assert first.id == second.id
    assert len(manager.get_case(platform_caller, case.id).evidence) == 1
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == "INVESTIGATION_EVIDENCE_ADDED").count() == 1



def test_duplicate_link_race_keeps_surrounding_work(manager, platform_caller, db, clock):
    """Test that losing the evidence insert race only undoes the duplicate row."""
    case = _open_case(manager, platform_caller)
    ledger = LedgerService(db, clock=clock)
    attempt = ledger.append("login_attempt", {"email": "a@b.c", "success": False})
    db.commit()
    pending = ledger.record_audit("ANALYST_NOTE_IMPORTED", user_id="admin-1")
    real_existing = manager._existing_evidence
    calls = []

    def existing_then_race(case_id, evidence_type, evidence_id):
        calls.append(evidence_id)
        if len(calls) == 1:
            # Another writer links the same record after our lookup
            db.execute(
                insert(CaseEvidence).values(
                    case_id=case_id,
                    evidence_type=evidence_type,
                    evidence_id=evidence_id,
                    added_by="admin-2",
                    added_at=clock(),
                    metadata_json={},
                )
            )
            return None
        return real_existing(case_id, evidence_type, evidence_id)

    manager._existing_evidence = existing_then_race

    link = manager.add_evidence(
        platform_caller, case.id, {"evidence_type": "login_attempt", "evidence_id": attempt.id}
    )

    assert link.added_by == "admin-2"
    assert db.get(AuditLogEntry, pending.id) is not None
    assert db.get(InvestigationCase, case.id) is not None
    assert db.query(CaseEvidence).filter(CaseEvidence.case_id == case.id).count() == 1

def test_add_evidence_requires_resolvable_reference(manager, platform_caller):
    case = _open_case(manager, platform_caller)

    with pytest.raises(NotFoundError):
        manager.add_evidence(platform_caller, case.id, {"evidence_type": "session", "evidence_id": "nope"})


def test_other_evidence_is_not_resolved(manager, platform_caller):
    case = _open_case(manager, platform_caller)

    link = manager.add_evidence(
        platform_caller, case.id, {"evidence_type": "other", "evidence_id": "ticket-4411"}
    )

    assert link.evidence_type == "other"


def test_file_evidence_resolves_registered_files(manager, platform_caller):
    case = _open_case(manager, platform_caller)
    evidence_file = manager.register_file(
        platform_caller, {"filename": "capture.pcap", "storage_ref": "s3://bucket/capture.pcap"}
    )

    link = manager.add_evidence(
        platform_caller, case.id, {"evidence_type": "file", "evidence_id": evidence_file.id}
    )

    assert link.evidence_id == evidence_file.id


def test_list_cases_filters(manager, platform_caller, clock):
    _open_case(manager, platform_caller, priority="high", tags=["stuffing"])
    clock.advance(minutes=1)
    _open_case(manager, platform_caller, priority="low", related_user_id="u9")

    high = manager.list_cases(platform_caller, {"priority": "high"})
    tagged = manager.list_cases(platform_caller, {"tags": ["stuffing"]})
    by_user = manager.list_cases(platform_caller, {"related_user_id": "u9"})
    everything = manager.list_cases(platform_caller)

    assert high.total == 1 and high.items[0].priority == "high"
    assert tagged.total == 1
    assert by_user.items[0].priority == "low"
    assert [c.priority for c in everything.items] == ["low", "high"]


def test_list_cases_rejects_unknown_filter(manager, platform_caller):
    with pytest.raises(ValidationError):
        manager.list_cases(platform_caller, {"severity": "high"})


def test_promote_finding_opens_anomaly_case(manager, platform_caller, db, clock):
    ledger = LedgerService(db, clock=clock)
    attempts = [
        ledger.append(
            "login_attempt",
            {"email": "u1@example.com", "user_id": "u1", "tenant_id": "tenant-a", "success": False},
        )
        for _ in range(2)
    ]
    db.commit()
    finding = {
        "type": "failed_logins",
        "severity": "high",
        "description": "12 failed login attempts within 15 minutes",
        "user_id": "u1",
        "tenant_id": "tenant-a",
        "detected_at": clock.now.isoformat(),
        "evidence": [
            {"type": "login_attempt", "id": a.id, "timestamp": a.attempted_at.isoformat()} for a in attempts
        ],
    }

    case = manager.promote_finding(platform_caller, finding)

    assert case.case_type == "anomaly"
    assert case.priority == "high"
    assert case.related_user_id == "u1"
    assert case.tags == ["anomaly", "failed_logins"]
    detail = manager.get_case(platform_caller, case.id)
    assert [n.note_type for n in detail.notes] == ["finding"]
    assert sorted(e.evidence_id for e in detail.evidence) == sorted(a.id for a in attempts)
    assert {e.evidence_source for e in detail.evidence} == {"detector"}


def test_transition_table():
    assert allowed_targets("open") == ["investigating"]
    assert allowed_targets("investigating") == ["open", "resolved"]
    assert allowed_targets("resolved") == ["closed", "investigating"]
    assert allowed_targets("closed") == []
    with pytest.raises(InvalidStateTransition):
        validate_transition("open", "open")


def test_notifier_failure_does_not_block_creation(db, clock, platform_caller):
    class BrokenNotifier:
        def notify(self, *args, **kwargs):
            return False

    case = CaseManager(db, clock=clock, notifier=BrokenNotifier()).create(
        platform_caller, {"title": "x", "case_type": "other"}
    )

    assert case.status == "open"
    assert case.opened_at == clock.now
