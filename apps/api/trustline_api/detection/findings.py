"""Finding and report shapes. Findings are recomputed per scan, never stored."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from trustline_api.utils.time import to_naive_utc


FindingType = Literal["failed_logins", "multiple_ips", "unusual_activity", "suspicious_pattern"]
Severity = Literal["low", "medium", "high", "critical"]


class DetectionWindow(BaseModel):
    """The bounded ledger window a scan runs over."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    start: datetime = Field(validation_alias=AliasChoices("start", "from"))
    end: datetime = Field(validation_alias=AliasChoices("end", "to"))

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _check_range(self):
        if self.start >= self.end:
            raise ValueError("window start must be before end")
        return self

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end


class EvidenceItem(BaseModel):
    type: Literal["login_attempt", "session", "audit_log", "password_change"]
    id: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)


class AnomalyFinding(BaseModel):
    type: FindingType
    severity: Severity
    description: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    tenant_id: Optional[str] = None
    evidence: list[EvidenceItem] = Field(default_factory=list)
    detected_at: datetime


class DetectionReport(BaseModel):
    window: DetectionWindow
    config_hash: str
    partial: bool = False
    unavailable_sources: list[str] = Field(default_factory=list)
    findings: list[AnomalyFinding] = Field(default_factory=list)
