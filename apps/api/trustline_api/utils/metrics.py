"""Prometheus metrics."""

from prometheus_client import Counter

# Ledger metrics
ledger_appends = Counter(
    "trustline_ledger_appends_total",
    "Total records appended to the security ledger",
    ["kind"],
)

# Session metrics
sessions_revoked = Counter(
    "trustline_sessions_revoked_total",
    "Sessions transitioned to inactive",
    ["reason"],  # revoked, revoke_all, ended, expired
)

# Detection metrics
detection_findings = Counter(
    "trustline_detection_findings_total",
    "Anomaly findings produced by detection scans",
    ["type"],
)

detection_partial_scans = Counter(
    "trustline_detection_partial_scans_total",
    "Detection scans that returned partial results",
)

# Case metrics
case_transitions = Counter(
    "trustline_case_transitions_total",
    "Investigation case status transitions",
    ["from_status", "to_status"],
)

# Export metrics
exports = Counter(
    "trustline_exports_total",
    "Audit exports produced",
    ["format", "outcome"],  # outcome: completed, cancelled, failed
)

# Notification metrics
notification_deliveries = Counter(
    "trustline_notification_deliveries_total",
    "Case notification delivery attempts",
    ["status"],  # delivered, failed, skipped
)
