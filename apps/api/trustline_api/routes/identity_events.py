"""Intake endpoints for the external identity layer."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, get_caller
from trustline_api.db.session import get_db
from trustline_api.identity.events import IdentityEventSink
from trustline_api.ledger.serializers import serialize_record

router = APIRouter(prefix="/v1/identity-events", tags=["identity-events"])


class SessionEnded(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(default="logout", max_length=64)


@router.post("/login-attempts", status_code=status.HTTP_201_CREATED)
async def login_attempt(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return serialize_record(IdentityEventSink(db).on_login_attempt(caller, payload))


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def session_created(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return serialize_record(IdentityEventSink(db).on_session_created(caller, payload))


@router.post("/sessions/{session_id}/end")
async def session_ended(
    session_id: str,
    body: Optional[SessionEnded] = None,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    reason = (body.reason if body else None) or "logout"
    return serialize_record(IdentityEventSink(db).on_session_ended(caller, session_id, reason))


@router.post("/password-changes", status_code=status.HTTP_201_CREATED)
async def password_changed(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return serialize_record(IdentityEventSink(db).on_password_changed(caller, payload))


@router.post("/audit-logs", status_code=status.HTTP_201_CREATED)
async def audit_event(
    payload: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return serialize_record(IdentityEventSink(db).on_audit_event(caller, payload))
