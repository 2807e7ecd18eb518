"""Tunable detection thresholds."""

import hashlib
import json

from pydantic import BaseModel, ConfigDict, Field

from trustline_api.settings import Settings, get_settings


class DetectionConfig(BaseModel):
    """Heuristic thresholds. Immutable so a scan cannot change them mid-run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    failed_login_threshold: int = Field(default=5, ge=1)
    failed_login_window_minutes: int = Field(default=15, ge=1)
    multiple_ips_limit: int = Field(default=2, ge=1)
    unusual_activity_multiplier: float = Field(default=3.0, gt=1.0)
    unusual_activity_baseline_days: int = Field(default=7, ge=1)
    unusual_activity_min_baseline_hours: int = Field(default=6, ge=1)
    suspicious_pattern_tags: tuple[str, ...] = ("authentication", "security")
    max_evidence: int = Field(default=50, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings = None) -> "DetectionConfig":
        settings = settings or get_settings()
        return cls(
            failed_login_threshold=settings.failed_login_threshold,
            failed_login_window_minutes=settings.failed_login_window_minutes,
            multiple_ips_limit=settings.multiple_ips_limit,
            unusual_activity_multiplier=settings.unusual_activity_multiplier,
            unusual_activity_baseline_days=settings.unusual_activity_baseline_days,
            unusual_activity_min_baseline_hours=settings.unusual_activity_min_baseline_hours,
            suspicious_pattern_tags=tuple(sorted(set(settings.suspicious_pattern_tags))),
            max_evidence=settings.detection_max_evidence,
        )

    def config_hash(self) -> str:
        """SHA-256 over the canonical JSON of the thresholds."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
