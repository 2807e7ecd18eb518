"""Ordered rendering of a case, its children and the ledger records they reference.

The only volatile value in an export is ``generated_at``; it is the first
JSON key and the first CSV row, so everything after it is diff-stable for
an unchanged case.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from trustline_api.export.streams import check_cancelled, csv_stream, dumps, json_array_stream
from trustline_api.ledger.serializers import canonical, serialize_record
from trustline_api.models import CaseEvidence, CaseNote, EvidenceFile, InvestigationCase
from trustline_api.utils.time import isoformat

CASE_FIELDS = (
    "id", "case_number", "title", "description", "status", "priority", "case_type",
    "related_user_id", "related_tenant_id", "assigned_to", "created_by", "resolved_by",
    "opened_at", "investigated_at", "resolved_at", "closed_at", "resolution",
    "resolution_notes", "tags", "metadata", "version", "created_at", "updated_at",
)
NOTE_FIELDS = ("id", "case_id", "note", "note_type", "created_by", "created_at", "metadata")
EVIDENCE_FIELDS = (
    "id", "case_id", "evidence_type", "evidence_id", "evidence_source",
    "description", "added_by", "added_at", "metadata",
)
FILE_FIELDS = ("id", "filename", "content_type", "sha256", "storage_ref", "uploaded_by", "uploaded_at")

CSV_HEADER = ("section", "timestamp", "record_type", "record_id", "actor", "summary", "details")


def _render(obj, fields) -> OrderedDict:
    data = OrderedDict()
    for name in fields:
        value = getattr(obj, "metadata_json" if name == "metadata" else name)
        if isinstance(value, datetime):
            value = isoformat(value)
        elif isinstance(value, (dict, list)):
            value = canonical(value)
        data[name] = value
    return data


def serialize_case(case: InvestigationCase) -> OrderedDict:
    return _render(case, CASE_FIELDS)


def serialize_note(note: CaseNote) -> OrderedDict:
    return _render(note, NOTE_FIELDS)


def serialize_evidence_link(evidence: CaseEvidence) -> OrderedDict:
    return _render(evidence, EVIDENCE_FIELDS)


def serialize_evidence(evidence: CaseEvidence, record: Optional[dict]) -> OrderedDict:
    data = serialize_evidence_link(evidence)
    data["resolved"] = record is not None
    data["record"] = record
    return data


def serialize_file(evidence_file: EvidenceFile) -> OrderedDict:
    return _render(evidence_file, FILE_FIELDS)


@dataclass
class AuditTrail:
    """
    Everything an export renders, already in output order.

    ``history`` and ``related_activity`` are factories so large ledger
    excerpts are paged from the database while the export streams.
    """

    case: OrderedDict
    notes: list
    evidence: list
    history: Callable[[], Iterator[dict]]
    related_activity: Callable[[], Iterator[dict]]


def render_json(trail: AuditTrail, generated_at: datetime, cancel_event=None) -> Iterator[str]:
    yield '{"generated_at":' + dumps(isoformat(generated_at))
    check_cancelled(cancel_event)
    yield ',"case":' + dumps(trail.case)

    sections = (
        ("notes", lambda: iter(trail.notes)),
        ("evidence", lambda: iter(trail.evidence)),
        ("history", trail.history),
        ("related_activity", trail.related_activity),
    )
    for name, items in sections:
        yield f',"{name}":'
        yield from json_array_stream(items(), cancel_event)
    yield "}"


def render_csv(trail: AuditTrail, generated_at: datetime, cancel_event=None) -> Iterator[str]:
    yield from csv_stream([("generated_at", isoformat(generated_at))])
    yield from csv_stream(_csv_rows(trail), cancel_event)


def _csv_rows(trail: AuditTrail) -> Iterator[tuple]:
    yield CSV_HEADER

    case = trail.case
    yield (
        "case", case["opened_at"], "investigation_case", case["id"], case["created_by"],
        f"{case['case_number']}: {case['title']}", case,
    )
    for note in trail.notes:
        details = OrderedDict([("note_type", note["note_type"]), ("metadata", note["metadata"])])
        yield ("note", note["created_at"], "case_note", note["id"], note["created_by"], note["note"], details)
    for item in trail.evidence:
        details = OrderedDict(
            [
                ("evidence_source", item["evidence_source"]),
                ("metadata", item["metadata"]),
                ("resolved", item["resolved"]),
                ("record", item["record"]),
            ]
        )
        yield (
            "evidence", item["added_at"], item["evidence_type"], item["evidence_id"],
            item["added_by"], item["description"], details,
        )
    for section, entries in (("history", trail.history()), ("related_activity", trail.related_activity())):
        for entry in entries:
            yield (
                section, entry["created_at"], "audit_log", entry["id"], entry["user_id"],
                entry["action"], entry,
            )


def audit_rows(records) -> Iterator[dict]:
    return (serialize_record(record) for record in records)
