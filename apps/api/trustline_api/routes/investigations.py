"""Investigation case endpoints (platform scope)."""

from typing import Literal

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, get_caller
from trustline_api.db.session import get_db
from trustline_api.export.audit_trail import (
    serialize_case,
    serialize_evidence_link,
    serialize_file,
    serialize_note,
)
from trustline_api.investigations.service import CaseManager
from trustline_api.routes.params import page_response, query_params, stream_response

router = APIRouter(prefix="/v1/investigations", tags=["investigations"])


@router.post("/cases", status_code=status.HTTP_201_CREATED)
async def create_case(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    case = CaseManager(db).create(caller, payload)
    return serialize_case(case)


@router.get("/cases")
async def list_cases(
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    filters, pagination = query_params(request)
    page = CaseManager(db).list_cases(caller, filters, pagination)
    return page_response(page, serialize_case)


@router.get("/cases/{case_id}")
async def get_case(
    case_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Case with notes and evidence, both chronological."""
    detail = CaseManager(db).get_case(caller, case_id)
    data = serialize_case(detail.case)
    data["notes"] = [serialize_note(n) for n in detail.notes]
    data["evidence"] = [serialize_evidence_link(e) for e in detail.evidence]
    return data


@router.patch("/cases/{case_id}/status")
async def update_case_status(
    case_id: str,
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    case = CaseManager(db).update_status(caller, case_id, payload)
    return serialize_case(case)


@router.post("/cases/{case_id}/notes", status_code=status.HTTP_201_CREATED)
async def add_note(
    case_id: str,
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    note = CaseManager(db).add_note(caller, case_id, payload)
    return serialize_note(note)


@router.post("/cases/{case_id}/evidence", status_code=status.HTTP_201_CREATED)
async def add_evidence(
    case_id: str,
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Link evidence. Re-linking the same reference returns the existing row."""
    evidence = CaseManager(db).add_evidence(caller, case_id, payload)
    return serialize_evidence_link(evidence)


@router.get("/cases/{case_id}/export")
async def export_case(
    case_id: str,
    format: Literal["csv", "json", "pdf"] = "json",
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    manager = CaseManager(db)
    case_number = manager.get_case(caller, case_id).case.case_number
    chunks = manager.export_audit_trail(caller, case_id, format)
    return stream_response(chunks, format, f"{case_number}.{format}", db)


@router.post("/files", status_code=status.HTTP_201_CREATED)
async def register_evidence_file(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Register an out-of-band file so it can be linked as ``file`` evidence."""
    evidence_file = CaseManager(db).register_file(caller, payload)
    return serialize_file(evidence_file)


@router.post("/findings/promote", status_code=status.HTTP_201_CREATED)
async def promote_finding(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Open an anomaly case from a detector finding.

    Body: ``{"finding": {...}, "case": {...optional overrides}}``.
    """
    case = CaseManager(db).promote_finding(caller, payload.get("finding"), payload.get("case"))
    return serialize_case(case)
