"""Ledger query and export endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, get_caller, resolve_tenant_scope
from trustline_api.db.session import get_db
from trustline_api.errors import NotFoundError
from trustline_api.ledger.serializers import serialize_record
from trustline_api.ledger.service import LedgerService
from trustline_api.routes.params import page_response, query_params, stream_response
from trustline_api.utils.time import utcnow

router = APIRouter(prefix="/v1", tags=["ledger"])

COLLECTIONS = {
    "login-attempts": "login_attempt",
    "sessions": "session",
    "password-changes": "password_change",
    "audit-logs": "audit_log",
}

Collection = Literal["login-attempts", "sessions", "password-changes", "audit-logs"]


@router.get("/ledger/{collection}")
async def query_ledger(
    collection: Collection,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Query one record kind. Unknown query keys are rejected."""
    filters, pagination = query_params(request)
    page = LedgerService(db).query(caller, COLLECTIONS[collection], filters, pagination)
    return page_response(page, serialize_record)


@router.get("/ledger/{collection}/export")
async def export_ledger(
    collection: Collection,
    request: Request,
    format: Literal["csv", "json"] = "csv",
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Stream every matching record, oldest first."""
    filters, _ = query_params(request, exclude=("format",))
    kind = COLLECTIONS[collection]
    chunks = LedgerService(db).export_range(caller, kind, filters, format)
    filename = f"{collection}-{utcnow():%Y%m%dT%H%M%S}.{format}"
    return stream_response(chunks, format, filename, db)


@router.get("/ledger/{collection}/{record_id}")
async def get_ledger_record(
    collection: Collection,
    record_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    caller.require_scope("ledger:read")
    kind = COLLECTIONS[collection]
    record = LedgerService(db).get(kind, record_id)

    tenant_id = resolve_tenant_scope(caller, None)
    if record is None or (tenant_id is not None and record.tenant_id != tenant_id):
        raise NotFoundError(kind, record_id)
    return serialize_record(record)


@router.get("/users/{user_id}/actions")
async def get_user_actions(
    user_id: str,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Cross-tenant audit trail of one user (platform only)."""
    filters, pagination = query_params(request)
    page = LedgerService(db).get_user_actions(caller, user_id, filters, pagination)
    return page_response(page, serialize_record)
