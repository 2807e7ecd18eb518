"""Intake of events emitted by the external identity layer.

The identity layer authenticates users; this module only records what it
reports. Producers are restricted to their own tenant unless they hold
platform scope.
"""

import logging

from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, resolve_tenant_scope
from trustline_api.ledger.service import LedgerService
from trustline_api.models import LoginAttempt, PasswordChangeRecord, UserSession
from trustline_api.sessions.registry import SessionRegistry
from trustline_api.utils.time import utcnow

logger = logging.getLogger(__name__)

AUTH_TAGS = ["authentication", "security"]


class IdentityEventSink:
    """Appends identity-layer events to the ledger, one transaction per event."""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.ledger = LedgerService(db, clock=clock)
        self.sessions = SessionRegistry(db, clock=clock)

    def on_login_attempt(self, caller: CallerContext, record) -> LoginAttempt:
        """Record an attempt. Failures also get a warning-level audit entry."""
        caller.require_scope("identity:write")
        attempt = self.ledger.append("login_attempt", self._pin_tenant(caller, record))

        if not attempt.success:
            self.ledger.record_audit(
                "LOGIN_ATTEMPT_FAILED",
                resource_type="login_attempt",
                resource_id=attempt.id,
                user_id=attempt.user_id,
                tenant_id=attempt.tenant_id,
                severity="warning",
                tags=AUTH_TAGS,
                ip_address=attempt.ip_address,
                user_agent=attempt.user_agent,
                request_id=caller.request_id,
                details={"email": attempt.email, "failure_reason": attempt.failure_reason},
                created_at=attempt.attempted_at,
            )
        self.db.commit()
        return attempt

    def on_session_created(self, caller: CallerContext, session) -> UserSession:
        caller.require_scope("identity:write")
        record = self.ledger.append("session", self._pin_tenant(caller, session))
        self.db.commit()
        return record

    def on_session_ended(self, caller: CallerContext, session_id: str, reason: str = "logout") -> UserSession:
        """Logout or identity-side termination. Ending an inactive session is a no-op."""
        caller.require_scope("identity:write")
        return self.sessions.end_session(caller, session_id, reason)

    def on_password_changed(self, caller: CallerContext, record) -> PasswordChangeRecord:
        caller.require_scope("identity:write")
        change = self.ledger.append("password_change", self._pin_tenant(caller, record))
        self.ledger.record_audit(
            "PASSWORD_CHANGED",
            resource_type="user",
            resource_id=change.user_id,
            user_id=change.user_id,
            tenant_id=change.tenant_id,
            severity="info",
            tags=AUTH_TAGS,
            ip_address=change.ip_address,
            user_agent=change.user_agent,
            request_id=caller.request_id,
            details={"change_type": change.change_type, "changed_by": change.changed_by},
            created_at=change.changed_at,
        )
        self.db.commit()
        return change

    def on_audit_event(self, caller: CallerContext, record):
        """Audit entries raised by other platform components."""
        caller.require_scope("identity:write")
        data = self._pin_tenant(caller, record)
        data["request_id"] = data.get("request_id") or caller.request_id
        entry = self.ledger.append("audit_log", data)
        self.db.commit()
        return entry

    def _pin_tenant(self, caller: CallerContext, payload) -> dict:
        data = dict(payload or {})
        data["tenant_id"] = resolve_tenant_scope(caller, data.get("tenant_id"))
        return data
