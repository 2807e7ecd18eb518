"""Request payloads for case management."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from trustline_api.ledger.filters import TAG_PATTERN
from trustline_api.utils.time import to_naive_utc

CaseStatus = Literal["open", "investigating", "resolved", "closed"]
CasePriority = Literal["low", "medium", "high", "critical"]
CaseType = Literal["anomaly", "security", "compliance", "abuse", "other"]
NoteType = Literal["note", "finding", "evidence", "action"]
EvidenceType = Literal["audit_log", "session", "login_attempt", "password_change", "file", "other"]


def normalize_tags(value: list[str]) -> list[str]:
    tags = sorted({tag.strip().lower() for tag in value if tag.strip()})
    for tag in tags:
        if not TAG_PATTERN.match(tag):
            raise ValueError(f"Invalid tag: {tag!r}")
    return tags


class CaseCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    case_type: CaseType
    priority: CasePriority = "medium"
    related_user_id: Optional[str] = None
    related_tenant_id: Optional[str] = None
    assigned_to: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: CaseStatus
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    assigned_to: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class NoteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str = Field(..., min_length=1)
    note_type: NoteType = "note"
    metadata: dict[str, Any] = Field(default_factory=dict)


class EvidenceCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    evidence_type: EvidenceType
    evidence_id: str = Field(..., min_length=1, max_length=255)
    evidence_source: Optional[str] = None
    description: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EvidenceFileCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    filename: str = Field(..., min_length=1, max_length=255)
    content_type: Optional[str] = None
    sha256: Optional[str] = Field(default=None, pattern=r"^[0-9a-f]{64}$")
    storage_ref: str = Field(..., min_length=1, max_length=512)


class CaseFilters(BaseModel):
    """Closed filter set for listing cases."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[CaseStatus] = None
    priority: Optional[CasePriority] = None
    case_type: Optional[CaseType] = None
    related_user_id: Optional[str] = None
    related_tenant_id: Optional[str] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    tags: Optional[list[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return normalize_tags(value) if value is not None else None

    @field_validator("start", "end")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_range(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self
