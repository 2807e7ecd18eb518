"""Investigation case manager."""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext
from trustline_api.detection.findings import AnomalyFinding
from trustline_api.errors import (
    ConcurrentModificationError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from trustline_api.export import audit_trail
from trustline_api.export.files import tracked
from trustline_api.export.pdf import render_pdf
from trustline_api.investigations.numbering import next_case_number
from trustline_api.investigations.schemas import (
    CaseCreate,
    CaseFilters,
    EvidenceCreate,
    EvidenceFileCreate,
    NoteCreate,
    StatusUpdate,
)
from trustline_api.investigations.states import INITIAL_STATUS, TERMINAL_STATUSES, validate_transition
from trustline_api.ledger.filters import Page, Pagination, parse_model
from trustline_api.ledger.serializers import serialize_record
from trustline_api.ledger.service import LEDGER_KINDS, LedgerService
from trustline_api.models import CaseEvidence, CaseNote, EvidenceFile, InvestigationCase
from trustline_api.notifications.service import NotificationService
from trustline_api.settings import get_settings
from trustline_api.utils.metrics import case_transitions
from trustline_api.utils.time import utcnow

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json", "pdf")


@dataclass
class CaseDetail:
    """A case with its notes and evidence in chronological order."""

    case: InvestigationCase
    notes: list
    evidence: list


class CaseManager:
    """
    Owns investigation cases, notes and evidence.

    Cases are cross-tenant superuser artifacts, so every operation requires
    platform scope. Status changes are compare-and-set on (id, status,
    version); the loser of a race gets ConcurrentModificationError.
    """

    def __init__(self, db: Session, clock=utcnow, notifier: Optional[NotificationService] = None):
        """Initialize case manager."""
        self.db = db
        self.clock = clock
        self.ledger = LedgerService(db, clock=clock)
        self.notifier = notifier or NotificationService()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, caller: CallerContext, payload) -> InvestigationCase:
        """Open a new case with a freshly allocated case number."""
        caller.require_platform()
        data = parse_model(CaseCreate, payload)

        case = self._create(caller, data)
        self.db.commit()

        self._after_create(caller, case)
        return case

    def update_status(self, caller: CallerContext, case_id: str, payload) -> InvestigationCase:
        """Move a case along the workflow."""
        caller.require_platform()
        data = parse_model(StatusUpdate, payload)

        case = self._get(case_id)
        from_status, version = case.status, case.version
        if from_status in TERMINAL_STATUSES:
            raise InvalidStateTransition(from_status, data.status)

        if data.status == "resolved" and not (data.resolution or "").strip():
            raise ValidationError("resolution is required to resolve a case")
        if data.expected_version is not None and data.expected_version != version:
            raise ConcurrentModificationError(
                f"Case {case.case_number} is at version {version}, not {data.expected_version}"
            )

        stamp, cleared = validate_transition(from_status, data.status)

        now = self.clock()
        values = {"status": data.status, "version": version + 1, "updated_at": now}
        if stamp:
            values[stamp] = now
        for column in cleared:
            values[column] = None
        if data.status == "resolved":
            values["resolution"] = data.resolution.strip()
            values["resolution_notes"] = data.resolution_notes
            values["resolved_by"] = data.resolved_by or caller.user_id
        if data.assigned_to is not None and data.status in ("open", "investigating"):
            values["assigned_to"] = data.assigned_to

        updated = (
            self.db.query(InvestigationCase)
            .filter(
                InvestigationCase.id == case.id,
                InvestigationCase.status == from_status,
                InvestigationCase.version == version,
            )
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            self.db.rollback()
            raise ConcurrentModificationError(
                f"Case {case.case_number} was modified concurrently; re-read and retry"
            )

        self.ledger.record_audit(
            "INVESTIGATION_CASE_STATUS_CHANGED",
            resource_type="investigation_case",
            resource_id=case.id,
            user_id=caller.user_id,
            tenant_id=case.related_tenant_id,
            tags=["investigation"],
            ip_address=caller.ip_address,
            request_id=caller.request_id,
            details={
                "case_number": case.case_number,
                "from_status": from_status,
                "to_status": data.status,
                "version": version + 1,
            },
        )
        self.db.commit()
        self.db.refresh(case)

        case_transitions.labels(from_status=from_status, to_status=data.status).inc()
        logger.info(
            "Case status changed",
            extra={
                "case_number": case.case_number,
                "from_status": from_status,
                "to_status": data.status,
                "changed_by": caller.user_id,
            },
        )
        return case

    def add_note(self, caller: CallerContext, case_id: str, payload) -> CaseNote:
        """Append a note. Allowed in every status; never changes the case."""
        caller.require_platform()
        data = parse_model(NoteCreate, payload)
        case = self._get(case_id)

        metadata = dict(data.metadata)
        note_type = data.note_type
        if case.status == "closed" and note_type != "note":
            metadata["requested_note_type"] = note_type
            note_type = "note"

        note = CaseNote(
            case_id=case.id,
            note=data.note,
            note_type=note_type,
            created_by=caller.user_id,
            created_at=self.clock(),
            metadata_json=metadata,
        )
        self.db.add(note)
        self.db.commit()
        return note

    def add_evidence(self, caller: CallerContext, case_id: str, payload) -> CaseEvidence:
        """
        Link a ledger or file record to a case.

        The reference must resolve. Linking the same (type, id) twice
        returns the existing row.
        """
        caller.require_platform()
        data = parse_model(EvidenceCreate, payload)
        case = self._get(case_id)

        evidence = self._link_evidence(caller, case, data)
        self.db.commit()
        return evidence

    def register_file(self, caller: CallerContext, payload) -> EvidenceFile:
        """Record metadata for an out-of-band file so it can be linked as evidence."""
        caller.require_platform()
        data = parse_model(EvidenceFileCreate, payload)
        evidence_file = EvidenceFile(uploaded_by=caller.user_id, uploaded_at=self.clock(), **data.model_dump())
        self.db.add(evidence_file)
        self.db.commit()
        return evidence_file

    def promote_finding(self, caller: CallerContext, finding, payload=None) -> InvestigationCase:
        """Open an anomaly case from a detector finding and link its evidence."""
        caller.require_platform()
        finding = parse_model(AnomalyFinding, finding)
        subject = finding.user_id or finding.email or "unknown subject"

        overrides = dict(payload or {})
        data = parse_model(
            CaseCreate,
            {
                "title": f"{finding.type.replace('_', ' ').capitalize()} for {subject}",
                "description": finding.description,
                "case_type": "anomaly",
                "priority": finding.severity,
                "related_user_id": finding.user_id,
                "related_tenant_id": finding.tenant_id,
                "tags": ["anomaly", finding.type],
                "metadata": {"finding": finding.model_dump(mode="json")},
                **overrides,
            },
        )

        case = self._create(caller, data)
        self.db.add(
            CaseNote(
                case_id=case.id,
                note=finding.description,
                note_type="finding",
                created_by=caller.user_id,
                created_at=self.clock(),
                metadata_json={"finding_type": finding.type, "severity": finding.severity},
            )
        )
        for item in finding.evidence:
            self._link_evidence(
                caller,
                case,
                EvidenceCreate(
                    evidence_type=item.type,
                    evidence_id=item.id,
                    evidence_source="detector",
                    description=f"{finding.type} evidence",
                ),
            )
        self.db.commit()

        self._after_create(caller, case)
        return case

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_case(self, caller: CallerContext, case_id: str) -> CaseDetail:
        caller.require_platform()
        case = self._get(case_id)
        notes = (
            self.db.query(CaseNote)
            .filter(CaseNote.case_id == case.id)
            .order_by(CaseNote.created_at.asc(), CaseNote.id.asc())
            .all()
        )
        evidence = (
            self.db.query(CaseEvidence)
            .filter(CaseEvidence.case_id == case.id)
            .order_by(CaseEvidence.added_at.asc(), CaseEvidence.id.asc())
            .all()
        )
        return CaseDetail(case=case, notes=notes, evidence=evidence)

    def list_cases(self, caller: CallerContext, filters=None, pagination=None) -> Page:
        """Filterable case listing, newest opened first by default."""
        caller.require_platform()
        filters = parse_model(CaseFilters, filters)
        pagination = parse_model(Pagination, pagination)

        query = self.db.query(InvestigationCase)
        for column in (
            "status", "priority", "case_type", "related_user_id",
            "related_tenant_id", "assigned_to", "created_by",
        ):
            value = getattr(filters, column)
            if value is not None:
                query = query.filter(getattr(InvestigationCase, column) == value)
        if filters.start:
            query = query.filter(InvestigationCase.opened_at >= filters.start)
        if filters.end:
            query = query.filter(InvestigationCase.opened_at <= filters.end)
        if filters.tags:
            tags_text = cast(InvestigationCase.tags, String)
            query = query.filter(or_(*[tags_text.like(f'%"{tag}"%') for tag in filters.tags]))

        total = query.count()
        if pagination.order == "newest":
            query = query.order_by(InvestigationCase.opened_at.desc(), InvestigationCase.id.desc())
        else:
            query = query.order_by(InvestigationCase.opened_at.asc(), InvestigationCase.id.asc())
        items = query.offset(pagination.offset).limit(pagination.limit).all()
        return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_audit_trail(
        self,
        caller: CallerContext,
        case_id: str,
        fmt: str = "json",
        cancel_event=None,
        generated_at=None,
    ) -> Iterator:
        """
        Render a case for reviewers.

        Referenced ledger records are resolved when the export runs, not when
        the evidence was linked. Returns an iterator of chunks (str for
        csv/json, a single bytes chunk for pdf). Raises NotFoundError before
        any output is produced.
        """
        caller.require_platform()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {fmt}")

        detail = self.get_case(caller, case_id)
        trail = self._build_trail(caller, detail)
        generated_at = generated_at or self.clock()

        logger.info(
            "Case export started",
            extra={"case_number": detail.case.case_number, "format": fmt, "requested_by": caller.user_id},
        )
        if fmt == "json":
            chunks = audit_trail.render_json(trail, generated_at, cancel_event)
        elif fmt == "csv":
            chunks = audit_trail.render_csv(trail, generated_at, cancel_event)
        else:
            chunks = _lazy_pdf(trail, generated_at, cancel_event)
        return tracked(chunks, fmt)

    def _build_trail(self, caller: CallerContext, detail: CaseDetail) -> audit_trail.AuditTrail:
        case = detail.case
        settings = get_settings()

        evidence = [
            audit_trail.serialize_evidence(item, self._resolve_record(item.evidence_type, item.evidence_id))
            for item in detail.evidence
        ]

        def history():
            records = self.ledger.iter_records(
                caller,
                "audit_log",
                {"resource_type": "investigation_case", "resource_id": case.id},
            )
            return audit_trail.audit_rows(records)

        def related_activity():
            if not case.related_user_id:
                return iter(())
            records = self.ledger.iter_records(
                caller,
                "audit_log",
                {"user_id": case.related_user_id, "tenant_id": case.related_tenant_id},
                limit=settings.export_related_activity_limit,
            )
            return audit_trail.audit_rows(records)

        return audit_trail.AuditTrail(
            case=audit_trail.serialize_case(case),
            notes=[audit_trail.serialize_note(n) for n in detail.notes],
            evidence=evidence,
            history=history,
            related_activity=related_activity,
        )

    # ------------------------------------------------------------------

    def _get(self, case_id: str) -> InvestigationCase:
        case = self.db.get(InvestigationCase, case_id)
        if case is None:
            raise NotFoundError("InvestigationCase", case_id)
        return case

    def _create(self, caller: CallerContext, data: CaseCreate) -> InvestigationCase:
        now = self.clock()
        case = InvestigationCase(
            case_number=next_case_number(self.db, now),
            title=data.title,
            description=data.description,
            status=INITIAL_STATUS,
            priority=data.priority,
            case_type=data.case_type,
            related_user_id=data.related_user_id,
            related_tenant_id=data.related_tenant_id,
            assigned_to=data.assigned_to,
            created_by=caller.user_id,
            opened_at=now,
            tags=data.tags,
            metadata_json=data.metadata,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.db.add(case)
        self.db.flush()

        self.ledger.record_audit(
            "INVESTIGATION_CASE_CREATED",
            resource_type="investigation_case",
            resource_id=case.id,
            user_id=caller.user_id,
            tenant_id=data.related_tenant_id,
            tags=["investigation"],
            ip_address=caller.ip_address,
            request_id=caller.request_id,
            details={
                "case_number": case.case_number,
                "case_type": case.case_type,
                "priority": case.priority,
                "related_user_id": case.related_user_id,
            },
        )
        return case

    def _after_create(self, caller: CallerContext, case: InvestigationCase) -> None:
        logger.info(
            "Investigation case created",
            extra={"case_number": case.case_number, "case_type": case.case_type, "created_by": caller.user_id},
        )
        self.notifier.notify(
            "investigation.case.created",
            {
                "case_id": case.id,
                "case_number": case.case_number,
                "title": case.title,
                "case_type": case.case_type,
                "priority": case.priority,
                "related_tenant_id": case.related_tenant_id,
                "created_by": case.created_by,
            },
            correlation_id=caller.request_id,
        )

    def _existing_evidence(self, case_id: str, evidence_type: str, evidence_id: str) -> Optional[CaseEvidence]:
        return (
            self.db.query(CaseEvidence)
            .filter(
                CaseEvidence.case_id == case_id,
                CaseEvidence.evidence_type == evidence_type,
                CaseEvidence.evidence_id == evidence_id,
            )
            .one_or_none()
        )

    def _link_evidence(self, caller: CallerContext, case: InvestigationCase, data: EvidenceCreate) -> CaseEvidence:
        existing = self._existing_evidence(case.id, data.evidence_type, data.evidence_id)
        if existing is not None:
            return existing

        if data.evidence_type != "other" and self._resolve_record(data.evidence_type, data.evidence_id) is None:
            raise NotFoundError(data.evidence_type, data.evidence_id)

        evidence = CaseEvidence(
            case_id=case.id,
            evidence_type=data.evidence_type,
            evidence_id=data.evidence_id,
            evidence_source=data.evidence_source,
            description=data.description,
            added_by=caller.user_id,
            added_at=self.clock(),
            metadata_json=data.metadata,
        )
        try:
            with self.db.begin_nested():
                self.db.add(evidence)
        except IntegrityError:
            # Another request linked the same reference first
            existing = self._existing_evidence(case.id, data.evidence_type, data.evidence_id)
            if existing is None:
                raise
            return existing

        self.ledger.record_audit(
            "INVESTIGATION_EVIDENCE_ADDED",
            resource_type="investigation_case",
            resource_id=case.id,
            user_id=caller.user_id,
            tenant_id=case.related_tenant_id,
            tags=["investigation"],
            ip_address=caller.ip_address,
            request_id=caller.request_id,
            details={
                "case_number": case.case_number,
                "evidence_type": data.evidence_type,
                "evidence_id": data.evidence_id,
            },
        )
        return evidence

    def _resolve_record(self, evidence_type: str, evidence_id: str) -> Optional[dict]:
        """Live lookup of the record an evidence row points at."""
        if evidence_type in LEDGER_KINDS:
            record = self.ledger.get(evidence_type, evidence_id)
            return serialize_record(record) if record is not None else None
        if evidence_type == "file":
            evidence_file = self.db.get(EvidenceFile, evidence_id)
            return audit_trail.serialize_file(evidence_file) if evidence_file is not None else None
        return None


def _lazy_pdf(trail, generated_at, cancel_event) -> Iterator[bytes]:
    yield render_pdf(trail, generated_at, cancel_event)
