"""Security ledger models.

Login attempts, password changes and audit log entries are insert-only.
Sessions are inserted by the identity layer; only the session registry
flips ``is_active`` / ``logout_at``, and never back.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text

from trustline_api.db.base import Base
from trustline_api.models._ids import new_id
from trustline_api.utils.time import utcnow

AUDIT_SEVERITIES = ("info", "warning", "error", "critical")
PASSWORD_CHANGE_TYPES = ("self_reset", "admin_reset", "admin_change", "forced_reset")


class LoginAttempt(Base):
    """One authentication attempt, success or failure."""

    __tablename__ = "login_attempts"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_info = Column(JSON, nullable=True)
    success = Column(Boolean, nullable=False, index=True)
    failure_reason = Column(String(255), nullable=True)
    attempted_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (Index("ix_login_attempts_tenant_attempted", "tenant_id", "attempted_at"),)


class UserSession(Base):
    """Session created on successful login."""

    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_info = Column(JSON, nullable=False, default=dict)
    login_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    logout_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (Index("ix_user_sessions_user_active", "user_id", "is_active"),)


class PasswordChangeRecord(Base):
    """One password change, ordered by ``changed_at``."""

    __tablename__ = "password_change_history"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    changed_by = Column(String(64), nullable=True)
    change_type = Column(String(32), nullable=False, index=True)  # self_reset, admin_reset, admin_change, forced_reset
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_info = Column(JSON, nullable=True)
    changed_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)


class AuditLogEntry(Base):
    """Canonical audit record consumed by the detector and by exports."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100), nullable=True, index=True)
    resource_id = Column(String(64), nullable=True)
    user_id = Column(String(64), nullable=True, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    severity = Column(String(16), default="info", nullable=False, index=True)  # info, warning, error, critical
    tags = Column(JSON, nullable=False, default=list)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (Index("ix_audit_logs_user_created", "user_id", "created_at"),)
