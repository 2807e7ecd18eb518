"""Detection heuristics.

Every function here is pure: it sees only the records and config it is
handed, uses no clock and no randomness, and returns findings in a stable
order. ``detected_at`` is the window end so reruns are byte-identical.
"""

import statistics
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Callable, Sequence

from trustline_api.detection.config import DetectionConfig
from trustline_api.detection.findings import AnomalyFinding, DetectionWindow, EvidenceItem

_SEVERITY_STEPS = ((2, "low"), (4, "medium"), (8, "high"))


def scale_severity(value: float, threshold: float) -> str:
    """Map how far ``value`` overshoots ``threshold`` onto a severity."""
    ratio = value / threshold
    for limit, severity in _SEVERITY_STEPS:
        if ratio < limit:
            return severity
    return "critical"


def _subject_key(key: tuple) -> tuple:
    return tuple("" if part is None else str(part) for part in key)


def _evidence_key(item: EvidenceItem) -> tuple:
    return (item.timestamp, item.type, item.id)


def _finalize_evidence(items, limit: int) -> list[EvidenceItem]:
    unique = {(item.type, item.id): item for item in items}
    return sorted(unique.values(), key=_evidence_key)[:limit]


def attempt_evidence(attempt) -> EvidenceItem:
    return EvidenceItem(
        type="login_attempt",
        id=attempt.id,
        timestamp=attempt.attempted_at,
        details={
            "email": attempt.email,
            "ip_address": attempt.ip_address,
            "success": attempt.success,
            "failure_reason": attempt.failure_reason,
        },
    )


def session_evidence(session) -> EvidenceItem:
    return EvidenceItem(
        type="session",
        id=session.id,
        timestamp=session.login_at,
        details={
            "ip_address": session.ip_address,
            "user_agent": session.user_agent,
        },
    )


def audit_evidence(entry) -> EvidenceItem:
    return EvidenceItem(
        type="audit_log",
        id=entry.id,
        timestamp=entry.created_at,
        details={
            "action": entry.action,
            "severity": entry.severity,
            "resource_type": entry.resource_type,
            "tags": sorted(entry.tags or []),
        },
    )


def densest_burst(rows: Sequence, span: timedelta, timestamp: Callable[[object], datetime]) -> list:
    """
    Longest run of ``rows`` (already sorted by time) fitting inside ``span``.

    Ties go to the earliest run.
    """
    best_start, best_end = 0, -1
    start = 0
    for end in range(len(rows)):
        while timestamp(rows[end]) - timestamp(rows[start]) > span:
            start += 1
        if end - start > best_end - best_start:
            best_start, best_end = start, end
    return list(rows[best_start:best_end + 1])


def failed_logins(attempts: Sequence, window: DetectionWindow, config: DetectionConfig) -> list[AnomalyFinding]:
    """Bursts of failed attempts per (user id or email, tenant)."""
    span = timedelta(minutes=config.failed_login_window_minutes)
    groups = defaultdict(list)
    for attempt in attempts:
        if attempt.success or not window.contains(attempt.attempted_at):
            continue
        groups[(attempt.user_id or attempt.email, attempt.tenant_id)].append(attempt)

    findings = []
    for key in sorted(groups, key=_subject_key):
        rows = sorted(groups[key], key=lambda a: (a.attempted_at, a.id))
        burst = densest_burst(rows, span, lambda a: a.attempted_at)
        if len(burst) < config.failed_login_threshold:
            continue

        user_id = next((a.user_id for a in burst if a.user_id), None)
        findings.append(
            AnomalyFinding(
                type="failed_logins",
                severity=scale_severity(len(burst), config.failed_login_threshold),
                description=(
                    f"{len(burst)} failed login attempts within "
                    f"{config.failed_login_window_minutes} minutes"
                ),
                user_id=user_id,
                email=burst[0].email,
                tenant_id=key[1],
                evidence=_finalize_evidence((attempt_evidence(a) for a in burst), config.max_evidence),
                detected_at=window.end,
            )
        )
    return findings


def multiple_ips(
    sessions: Sequence,
    attempts: Sequence,
    window: DetectionWindow,
    config: DetectionConfig,
) -> list[AnomalyFinding]:
    """Users seen on more distinct IPs than allowed within the window."""
    evidence_by_user = defaultdict(list)
    ips_by_user = defaultdict(set)

    for session in sessions:
        if session.ip_address and window.contains(session.login_at):
            key = (session.user_id, session.tenant_id)
            ips_by_user[key].add(session.ip_address)
            evidence_by_user[key].append(session_evidence(session))

    for attempt in attempts:
        if attempt.success and attempt.user_id and attempt.ip_address and window.contains(attempt.attempted_at):
            key = (attempt.user_id, attempt.tenant_id)
            ips_by_user[key].add(attempt.ip_address)
            evidence_by_user[key].append(attempt_evidence(attempt))

    findings = []
    for key in sorted(ips_by_user, key=_subject_key):
        distinct = len(ips_by_user[key])
        if distinct <= config.multiple_ips_limit:
            continue
        findings.append(
            AnomalyFinding(
                type="multiple_ips",
                severity=scale_severity(distinct, config.multiple_ips_limit + 1),
                description=f"User logged in from {distinct} different IP addresses",
                user_id=key[0],
                tenant_id=key[1],
                evidence=_finalize_evidence(evidence_by_user[key], config.max_evidence),
                detected_at=window.end,
            )
        )
    return findings


def _hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def unusual_activity(audit_logs: Sequence, window: DetectionWindow, config: DetectionConfig) -> list[AnomalyFinding]:
    """
    Hourly audit volume well above the user's own trailing median.

    Users with fewer than ``unusual_activity_min_baseline_hours`` active
    hours in the baseline period are skipped.
    """
    baseline_start = window.start - timedelta(days=config.unusual_activity_baseline_days)
    baseline = defaultdict(Counter)
    current = defaultdict(list)

    for entry in audit_logs:
        if not entry.user_id:
            continue
        key = (entry.user_id, entry.tenant_id)
        if baseline_start <= entry.created_at < window.start:
            baseline[key][_hour(entry.created_at)] += 1
        elif window.contains(entry.created_at):
            current[key].append(entry)

    findings = []
    for key in sorted(current, key=_subject_key):
        hourly = baseline.get(key)
        if not hourly or len(hourly) < config.unusual_activity_min_baseline_hours:
            continue

        median = statistics.median(hourly.values())
        limit = config.unusual_activity_multiplier * median
        counts = Counter(_hour(e.created_at) for e in current[key])
        flagged = {hour for hour, count in counts.items() if count > limit}
        if not flagged:
            continue

        peak = max(counts[hour] for hour in flagged)
        entries = [e for e in current[key] if _hour(e.created_at) in flagged]
        findings.append(
            AnomalyFinding(
                type="unusual_activity",
                severity=scale_severity(peak, limit),
                description=(
                    f"{peak} audit events in one hour against a baseline median of "
                    f"{median:g} per hour ({len(flagged)} hour(s) flagged)"
                ),
                user_id=key[0],
                tenant_id=key[1],
                evidence=_finalize_evidence((audit_evidence(e) for e in entries), config.max_evidence),
                detected_at=window.end,
            )
        )
    return findings


def suspicious_pattern(
    audit_logs: Sequence,
    prior_findings: Sequence[AnomalyFinding],
    window: DetectionWindow,
    config: DetectionConfig,
) -> list[AnomalyFinding]:
    """Critical security/authentication events for users already flagged in the same window."""
    triggers = defaultdict(list)
    for finding in prior_findings:
        if finding.type in ("failed_logins", "multiple_ips") and finding.user_id:
            triggers[finding.user_id].append(finding)

    tags = set(config.suspicious_pattern_tags)
    critical = defaultdict(list)
    for entry in audit_logs:
        if (
            entry.severity == "critical"
            and entry.user_id in triggers
            and tags.intersection(entry.tags or [])
            and window.contains(entry.created_at)
        ):
            critical[(entry.user_id, entry.tenant_id)].append(entry)

    findings = []
    for key in sorted(critical, key=_subject_key):
        related = triggers[key[0]]
        kinds = sorted({f.type for f in related})
        evidence = [audit_evidence(e) for e in critical[key]]
        for finding in related:
            evidence.extend(finding.evidence)
        findings.append(
            AnomalyFinding(
                type="suspicious_pattern",
                severity="critical",
                description=(
                    f"{len(critical[key])} critical security event(s) coinciding with "
                    f"{', '.join(kinds)}"
                ),
                user_id=key[0],
                tenant_id=key[1],
                evidence=_finalize_evidence(evidence, config.max_evidence),
                detected_at=window.end,
            )
        )
    return findings
