"""Append-only security ledger.

Owns login attempts, sessions, password changes and audit log entries.
Appends flush but do not commit; the calling operation owns the transaction.
"""

import logging
from collections import namedtuple
from datetime import timedelta
from typing import Iterator, Optional

from sqlalchemy import String, and_, cast, or_
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, resolve_tenant_scope
from trustline_api.errors import ValidationError
from trustline_api.export.streams import json_array_stream, records_to_csv
from trustline_api.ledger.filters import (
    AuditLogFilters,
    LoginAttemptFilters,
    Page,
    Pagination,
    PasswordChangeFilters,
    SessionFilters,
    parse_model,
)
from trustline_api.ledger.schemas import AuditLogIn, LoginAttemptIn, PasswordChangeIn, SessionIn
from trustline_api.ledger.serializers import FIELDS_BY_MODEL, serialize_record
from trustline_api.models import AuditLogEntry, LoginAttempt, PasswordChangeRecord, UserSession
from trustline_api.settings import get_settings
from trustline_api.utils.metrics import ledger_appends
from trustline_api.utils.time import utcnow

logger = logging.getLogger(__name__)

LedgerKind = namedtuple("LedgerKind", ["model", "timestamp", "filters", "schema"])

LEDGER_KINDS = {
    "login_attempt": LedgerKind(LoginAttempt, "attempted_at", LoginAttemptFilters, LoginAttemptIn),
    "session": LedgerKind(UserSession, "login_at", SessionFilters, SessionIn),
    "password_change": LedgerKind(PasswordChangeRecord, "changed_at", PasswordChangeFilters, PasswordChangeIn),
    "audit_log": LedgerKind(AuditLogEntry, "created_at", AuditLogFilters, AuditLogIn),
}


def ledger_kind(kind: str) -> LedgerKind:
    """Look up a ledger kind, rejecting unknown names."""
    try:
        return LEDGER_KINDS[kind]
    except KeyError:
        raise ValidationError(f"Unknown ledger kind: {kind}") from None


class LedgerService:
    """Insert-only event ledger with tenant-scoped reads."""

    def __init__(self, db: Session, clock=utcnow):
        """Initialize ledger service."""
        self.db = db
        self.clock = clock
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, kind: str, payload):
        """Validate and append one record. Existing records are never touched."""
        entry = ledger_kind(kind)
        data = parse_model(entry.schema, payload)
        record = self._build_record(kind, data)

        self.db.add(record)
        self.db.flush()

        ledger_appends.labels(kind=kind).inc()
        logger.debug(f"Ledger append: {kind} {record.id}")
        return record

    def record_audit(self, action: str, **fields) -> AuditLogEntry:
        """Append an audit log entry written by the subsystem itself."""
        return self.append("audit_log", {"action": action, **fields})

    def _build_record(self, kind: str, data):
        now = self.clock()
        values = data.model_dump()

        if kind == "login_attempt":
            values["attempted_at"] = values["attempted_at"] or now
            return LoginAttempt(**values)

        if kind == "session":
            if values["id"] and self.db.get(UserSession, values["id"]) is not None:
                raise ValidationError(f"Session {values['id']} already recorded")
            if values["id"] is None:
                values.pop("id")
            login_at = values["login_at"] or now
            values["login_at"] = login_at
            values["expires_at"] = values["expires_at"] or login_at + timedelta(
                seconds=self.settings.session_default_ttl_seconds
            )
            if values["expires_at"] <= login_at:
                raise ValidationError("expires_at must be after login_at")
            return UserSession(is_active=True, created_at=now, updated_at=now, **values)

        if kind == "password_change":
            values["changed_at"] = values["changed_at"] or now
            values["metadata_json"] = values.pop("metadata")
            return PasswordChangeRecord(**values)

        values["created_at"] = values["created_at"] or now
        return AuditLogEntry(**values)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: str, record_id: str):
        """Fetch a single record by id, or None."""
        entry = ledger_kind(kind)
        return self.db.get(entry.model, record_id)

    def query(
        self,
        caller: CallerContext,
        kind: str,
        filters=None,
        pagination=None,
    ) -> Page:
        """Query one record kind, constrained to the caller's tenant scope."""
        caller.require_scope("ledger:read")
        entry = ledger_kind(kind)
        filters = parse_model(entry.filters, filters)
        pagination = parse_model(Pagination, pagination)
        tenant_id = resolve_tenant_scope(caller, filters.tenant_id)

        query = self._filtered_query(entry, filters, tenant_id)
        total = query.count()

        timestamp = getattr(entry.model, entry.timestamp)
        if pagination.order == "newest":
            query = query.order_by(timestamp.desc(), entry.model.id.desc())
        else:
            query = query.order_by(timestamp.asc(), entry.model.id.asc())

        items = query.offset(pagination.offset).limit(pagination.limit).all()
        return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)

    def iter_records(
        self,
        caller: CallerContext,
        kind: str,
        filters=None,
        page_size: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Iterator:
        """Iterate matching records oldest-first using bounded keyset pages."""
        entry = ledger_kind(kind)
        filters = parse_model(entry.filters, filters)
        tenant_id = resolve_tenant_scope(caller, filters.tenant_id)
        page_size = page_size or self.settings.export_page_size

        base = self._filtered_query(entry, filters, tenant_id)
        return self._iter_pages(entry, base, page_size, limit)

    def _iter_pages(self, entry: LedgerKind, base, page_size: int, limit: Optional[int]) -> Iterator:
        model = entry.model
        timestamp = getattr(model, entry.timestamp)
        base = base.order_by(timestamp.asc(), model.id.asc())

        yielded = 0
        last = None
        while True:
            query = base
            if last is not None:
                last_ts, last_id = last
                query = query.filter(
                    or_(timestamp > last_ts, and_(timestamp == last_ts, model.id > last_id))
                )
            batch_size = page_size if limit is None else min(page_size, limit - yielded)
            if batch_size <= 0:
                return
            batch = query.limit(batch_size).all()
            for record in batch:
                yield record
            yielded += len(batch)
            if len(batch) < batch_size:
                return
            tail = batch[-1]
            last = (getattr(tail, entry.timestamp), tail.id)

    def export_range(
        self,
        caller: CallerContext,
        kind: str,
        filters=None,
        fmt: str = "csv",
        cancel_event=None,
    ) -> Iterator[str]:
        """Stream matching records as CSV or JSON without loading the full result set."""
        caller.require_scope("ledger:export")
        entry = ledger_kind(kind)
        filters = parse_model(entry.filters, filters)
        if fmt not in ("csv", "json"):
            raise ValidationError(f"Unsupported ledger export format: {fmt}")

        records = (serialize_record(r) for r in self.iter_records(caller, kind, filters))
        if fmt == "csv":
            return records_to_csv(FIELDS_BY_MODEL[entry.model], records, cancel_event)
        return json_array_stream(records, cancel_event)

    def get_user_actions(self, caller: CallerContext, user_id: str, filters=None, pagination=None) -> Page:
        """All audit log entries for a user across tenants (platform callers only)."""
        caller.require_platform()
        filters = parse_model(AuditLogFilters, filters).model_copy(update={"user_id": user_id})
        return self.query(caller, "audit_log", filters, pagination)

    # ------------------------------------------------------------------

    def _filtered_query(self, entry: LedgerKind, filters, tenant_id: Optional[str]):
        model = entry.model
        timestamp = getattr(model, entry.timestamp)
        query = self.db.query(model)

        if tenant_id is not None:
            query = query.filter(model.tenant_id == tenant_id)
        if filters.user_id:
            query = query.filter(model.user_id == filters.user_id)
        if filters.start:
            query = query.filter(timestamp >= filters.start)
        if filters.end:
            query = query.filter(timestamp <= filters.end)

        if isinstance(filters, LoginAttemptFilters):
            if filters.email:
                query = query.filter(LoginAttempt.email == filters.email)
            if filters.success is not None:
                query = query.filter(LoginAttempt.success == filters.success)
        elif isinstance(filters, SessionFilters):
            if filters.is_active is not None:
                query = query.filter(UserSession.is_active == filters.is_active)
        elif isinstance(filters, PasswordChangeFilters):
            if filters.change_type:
                query = query.filter(PasswordChangeRecord.change_type == filters.change_type)
        elif isinstance(filters, AuditLogFilters):
            if filters.action:
                query = query.filter(AuditLogEntry.action == filters.action)
            if filters.resource_type:
                query = query.filter(AuditLogEntry.resource_type == filters.resource_type)
            if filters.resource_id:
                query = query.filter(AuditLogEntry.resource_id == filters.resource_id)
            if filters.severity:
                query = query.filter(AuditLogEntry.severity == filters.severity)
            if filters.tags:
                # Tags are validated against TAG_PATTERN, so they are safe inside LIKE
                tags_text = cast(AuditLogEntry.tags, String)
                query = query.filter(or_(*[tags_text.like(f'%"{tag}"%') for tag in filters.tags]))

        return query
