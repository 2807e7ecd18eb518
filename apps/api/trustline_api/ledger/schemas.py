"""Input records accepted by the ledger from the identity layer and internal writers."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trustline_api.ledger.filters import TAG_PATTERN
from trustline_api.utils.time import to_naive_utc


class _RecordIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, value):
        if isinstance(value, datetime):
            return to_naive_utc(value)
        return value


class LoginAttemptIn(_RecordIn):
    """A single authentication attempt."""

    email: str = Field(..., min_length=1, max_length=320)
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None
    success: bool
    failure_reason: Optional[str] = None
    attempted_at: Optional[datetime] = None


class SessionIn(_RecordIn):
    """A session opened by a successful login."""

    id: Optional[str] = Field(default=None, max_length=36)
    user_id: str = Field(..., min_length=1)
    tenant_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: dict[str, Any] = Field(default_factory=dict)
    login_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class PasswordChangeIn(_RecordIn):
    """A password change."""

    user_id: str = Field(..., min_length=1)
    tenant_id: Optional[str] = None
    changed_by: Optional[str] = None
    change_type: Literal["self_reset", "admin_reset", "admin_change", "forced_reset"]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None
    changed_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditLogIn(_RecordIn):
    """An audit log entry."""

    action: str = Field(..., min_length=1, max_length=100)
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    severity: Literal["info", "warning", "error", "critical"] = "info"
    tags: list[str] = Field(default_factory=list)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        tags = sorted({tag.strip().lower() for tag in value if tag.strip()})
        for tag in tags:
            if not TAG_PATTERN.match(tag):
                raise ValueError(f"Invalid tag: {tag!r}")
        return tags
