"""Session control endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, get_caller
from trustline_api.db.session import get_db
from trustline_api.ledger.serializers import serialize_record
from trustline_api.routes.params import page_response, query_params
from trustline_api.sessions.registry import SessionRegistry

router = APIRouter(prefix="/v1", tags=["sessions"])


class RevokeAllRequest(BaseModel):
    """Bulk revoke request."""

    model_config = ConfigDict(extra="forbid")

    except_session_id: Optional[str] = None


@router.get("/sessions/active")
async def list_active_sessions(
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Active sessions; expired ones are reconciled on read."""
    filters, pagination = query_params(request)
    page = SessionRegistry(db).list_active_sessions(caller, filters, pagination)
    return page_response(page, serialize_record)


@router.get("/users/{user_id}/login-history")
async def login_history(
    user_id: str,
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    filters, pagination = query_params(request)
    page = SessionRegistry(db).login_history(caller, user_id, filters, pagination)
    return page_response(page, serialize_record)


@router.post("/sessions/{session_id}/revoke")
async def revoke_session(
    session_id: str,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """Revoke one session. Already-inactive sessions are returned unchanged."""
    session = SessionRegistry(db).revoke(caller, session_id)
    return serialize_record(session)


@router.post("/users/{user_id}/sessions/revoke-all")
async def revoke_all_sessions(
    user_id: str,
    body: Optional[RevokeAllRequest] = None,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    body = body or RevokeAllRequest()
    count = SessionRegistry(db).revoke_all(caller, user_id, except_session_id=body.except_session_id)
    return {"user_id": user_id, "revoked": count}
