"""Operator API key model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from trustline_api.db.base import Base
from trustline_api.utils.time import utcnow


class OperatorKey(Base):
    """API key for an operator (superuser, tenant admin, or identity-layer producer)."""

    __tablename__ = "operator_keys"

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(8), nullable=False, index=True)
    digest = Column(String(64), nullable=False, unique=True, index=True)
    label = Column(String(255), nullable=True)
    user_id = Column(String(64), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)  # NULL for platform operators
    scopes = Column(Text, nullable=True)  # JSON array of scopes
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
