"""Anomaly detector over an in-memory ledger snapshot."""

from dataclasses import dataclass, field
from typing import Optional

from trustline_api.detection import heuristics
from trustline_api.detection.config import DetectionConfig
from trustline_api.detection.findings import AnomalyFinding, DetectionWindow


@dataclass(frozen=True)
class LedgerSnapshot:
    """Records loaded for one scan. Audit logs include the baseline period."""

    login_attempts: tuple = field(default_factory=tuple)
    sessions: tuple = field(default_factory=tuple)
    audit_logs: tuple = field(default_factory=tuple)


class AnomalyDetector:
    """Runs every heuristic over a snapshot. Holds no state between scans."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def detect(self, snapshot: LedgerSnapshot, window: DetectionWindow) -> list[AnomalyFinding]:
        """
        Return findings ordered by heuristic, then by subject.

        Heuristics are evaluated independently; suspicious_pattern only reads
        the findings of the two login heuristics.
        """
        config = self.config
        snapshot = _scoped(snapshot, window)

        failed = heuristics.failed_logins(snapshot.login_attempts, window, config)
        multi_ip = heuristics.multiple_ips(snapshot.sessions, snapshot.login_attempts, window, config)
        unusual = heuristics.unusual_activity(snapshot.audit_logs, window, config)
        pattern = heuristics.suspicious_pattern(snapshot.audit_logs, failed + multi_ip, window, config)

        return failed + multi_ip + unusual + pattern


def _scoped(snapshot: LedgerSnapshot, window: DetectionWindow) -> LedgerSnapshot:
    """Drop records outside the window's tenant/user so callers may pass a wider snapshot."""
    if window.tenant_id is None and window.user_id is None:
        return snapshot

    def keep(record) -> bool:
        if window.tenant_id is not None and record.tenant_id != window.tenant_id:
            return False
        if window.user_id is not None and record.user_id != window.user_id:
            return False
        return True

    return LedgerSnapshot(
        login_attempts=tuple(r for r in snapshot.login_attempts if keep(r)),
        sessions=tuple(r for r in snapshot.sessions if keep(r)),
        audit_logs=tuple(r for r in snapshot.audit_logs if keep(r)),
    )
