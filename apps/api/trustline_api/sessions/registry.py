"""Session registry: active-session views and revocation."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, resolve_tenant_scope
from trustline_api.errors import NotFoundError
from trustline_api.ledger.filters import Page, SessionFilters, parse_model
from trustline_api.ledger.service import LedgerService
from trustline_api.models import UserSession
from trustline_api.utils.metrics import sessions_revoked
from trustline_api.utils.time import utcnow

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Tracks sessions recorded in the ledger.

    ``is_active`` goes from true to false exactly once. Every deactivation is
    a conditional UPDATE on ``is_active = true`` so concurrent revokes of the
    same session converge without double-writing ``logout_at``.
    """

    def __init__(self, db: Session, clock=utcnow):
        """Initialize session registry."""
        self.db = db
        self.clock = clock
        self.ledger = LedgerService(db, clock=clock)

    def list_active_sessions(self, caller: CallerContext, filters=None, pagination=None) -> Page:
        """
        Active, unexpired sessions in the caller's scope.

        Expired sessions that are still flagged active are reconciled first,
        as a side effect of the read.
        """
        caller.require_scope("ledger:read")
        filters = parse_model(SessionFilters, filters)
        tenant_id = resolve_tenant_scope(caller, filters.tenant_id)

        reconciled = self._expire(tenant_id=tenant_id, user_id=filters.user_id)
        if reconciled:
            self.db.commit()

        filters = filters.model_copy(update={"is_active": True})
        return self.ledger.query(caller, "session", filters, pagination)

    def login_history(self, caller: CallerContext, user_id: str, filters=None, pagination=None) -> Page:
        """All sessions of a user, active or not, newest first."""
        filters = parse_model(SessionFilters, filters).model_copy(update={"user_id": user_id})
        return self.ledger.query(caller, "session", filters, pagination)

    def revoke(self, caller: CallerContext, session_id: str) -> UserSession:
        """
        Revoke one session. Revoking an inactive session is a no-op.

        A session that has already expired is reconciled as expired and
        keeps ``logout_at`` empty.
        """
        caller.require_scope("sessions:write")
        session = self._get_scoped(caller, session_id)

        if self._deactivate(session, "SESSION_REVOKED", reason="revoked", caller=caller):
            logger.info(
                "Session revoked",
                extra={"session_id": session_id, "user_id": session.user_id, "revoked_by": caller.user_id},
            )
        self.db.commit()
        self.db.refresh(session)
        return session

    def revoke_all(
        self,
        caller: CallerContext,
        user_id: str,
        except_session_id: Optional[str] = None,
    ) -> int:
        """
        Revoke every active session of a user, optionally sparing one.

        The set of sessions is snapshotted first; sessions created after the
        snapshot are not touched. Returns the number revoked.
        """
        caller.require_scope("sessions:write")
        tenant_id = resolve_tenant_scope(caller, None)
        now = self.clock()
        self._expire(now=now, tenant_id=tenant_id, user_id=user_id)

        query = self.db.query(UserSession.id).filter(
            UserSession.user_id == user_id,
            UserSession.is_active.is_(True),
            UserSession.expires_at > now,
        )
        if tenant_id is not None:
            query = query.filter(UserSession.tenant_id == tenant_id)
        if except_session_id:
            query = query.filter(UserSession.id != except_session_id)
        snapshot = sorted(row.id for row in query.all())

        if not snapshot:
            self.db.commit()
            return 0

        count = (
            self.db.query(UserSession)
            .filter(
                UserSession.id.in_(snapshot),
                UserSession.is_active.is_(True),
                UserSession.expires_at > now,
            )
            .update(
                {"is_active": False, "logout_at": now, "updated_at": now},
                synchronize_session=False,
            )
        )
        if count:
            self.ledger.record_audit(
                "SESSION_REVOKED",
                resource_type="session",
                user_id=user_id,
                tenant_id=tenant_id,
                severity="warning",
                tags=["security", "session"],
                ip_address=caller.ip_address,
                request_id=caller.request_id,
                details={
                    "revoked_by": caller.user_id,
                    "reason": "revoke_all",
                    "count": count,
                    "except_session_id": except_session_id,
                    "session_ids": snapshot,
                },
            )
            sessions_revoked.labels(reason="revoke_all").inc(count)
        self.db.commit()

        logger.info(
            "Revoked all sessions for user",
            extra={"user_id": user_id, "count": count, "revoked_by": caller.user_id},
        )
        return count

    def end_session(self, caller: CallerContext, session_id: str, reason: str = "logout") -> UserSession:
        """Session ended by the identity layer (logout, timeout, ...). Idempotent."""
        session = self._get_scoped(caller, session_id)
        self._deactivate(session, "SESSION_ENDED", reason=reason, caller=caller)
        self.db.commit()
        self.db.refresh(session)
        return session

    def expire_stale_sessions(self, now=None) -> int:
        """Bulk sweep of sessions past ``expires_at``. Does not set ``logout_at``."""
        count = self._expire(now=now)
        self.db.commit()
        if count:
            logger.info("Expired stale sessions", extra={"count": count})
        return count

    # ------------------------------------------------------------------

    def _get_scoped(self, caller: CallerContext, session_id: str) -> UserSession:
        session = self.db.get(UserSession, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        if not caller.is_platform and session.tenant_id != caller.tenant_id:
            # Do not leak existence across tenants
            raise NotFoundError("Session", session_id)
        return session

    def _deactivate(self, session: UserSession, action: str, reason: str, caller: CallerContext) -> bool:
        now = self.clock()
        if self._expire(now=now, session_id=session.id):
            return False

        updated = (
            self.db.query(UserSession)
            .filter(
                UserSession.id == session.id,
                UserSession.is_active.is_(True),
                UserSession.expires_at > now,
            )
            .update(
                {"is_active": False, "logout_at": now, "updated_at": now},
                synchronize_session=False,
            )
        )
        if not updated:
            return False

        self.ledger.record_audit(
            action,
            resource_type="session",
            resource_id=session.id,
            user_id=session.user_id,
            tenant_id=session.tenant_id,
            severity="warning" if action == "SESSION_REVOKED" else "info",
            tags=["security", "session"],
            ip_address=caller.ip_address,
            request_id=caller.request_id,
            details={"reason": reason, "actor": caller.user_id},
        )
        sessions_revoked.labels(reason=reason if action == "SESSION_REVOKED" else "ended").inc()
        return True

    def _expire(
        self,
        now=None,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> int:
        now = now or self.clock()
        query = self.db.query(UserSession).filter(
            UserSession.is_active.is_(True),
            UserSession.expires_at <= now,
        )
        if tenant_id is not None:
            query = query.filter(UserSession.tenant_id == tenant_id)
        if user_id is not None:
            query = query.filter(UserSession.user_id == user_id)
        if session_id is not None:
            query = query.filter(UserSession.id == session_id)

        count = query.update({"is_active": False, "updated_at": now}, synchronize_session=False)
        if count:
            sessions_revoked.labels(reason="expired").inc(count)
        return count
