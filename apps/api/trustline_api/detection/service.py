"""On-demand detection scans over the ledger."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, resolve_tenant_scope
from trustline_api.detection.config import DetectionConfig
from trustline_api.detection.detector import AnomalyDetector, LedgerSnapshot
from trustline_api.detection.findings import DetectionReport, DetectionWindow
from trustline_api.ledger.filters import parse_model
from trustline_api.ledger.service import LedgerService
from trustline_api.settings import get_settings
from trustline_api.utils.metrics import detection_findings, detection_partial_scans

logger = logging.getLogger(__name__)

SOURCES = ("login_attempt", "session", "audit_log")


class DetectionService:
    """Loads a ledger window and runs the detector over it."""

    def __init__(self, db: Session, config: Optional[DetectionConfig] = None):
        """Initialize detection service."""
        self.db = db
        self.config = config or DetectionConfig.from_settings()
        self.ledger = LedgerService(db)
        self.page_size = get_settings().detection_page_size

    def detect_anomalies(self, caller: CallerContext, window) -> DetectionReport:
        """
        Scan ``window`` and return a report.

        Each record kind loads independently. If one fails, the report is
        marked partial and the heuristics run on whatever did load.
        """
        caller.require_scope("detection:run")
        window = parse_model(DetectionWindow, window)
        window = window.model_copy(update={"tenant_id": resolve_tenant_scope(caller, window.tenant_id)})

        loaded = {}
        unavailable = []
        for source in SOURCES:
            try:
                loaded[source] = self._load(caller, source, window)
            except SQLAlchemyError:
                logger.warning(
                    "Detection source unavailable",
                    extra={"source": source, "tenant_id": window.tenant_id},
                    exc_info=True,
                )
                self.db.rollback()
                loaded[source] = ()
                unavailable.append(source)

        snapshot = LedgerSnapshot(
            login_attempts=loaded["login_attempt"],
            sessions=loaded["session"],
            audit_logs=loaded["audit_log"],
        )
        findings = AnomalyDetector(self.config).detect(snapshot, window)

        for finding in findings:
            detection_findings.labels(type=finding.type).inc()
        if unavailable:
            detection_partial_scans.inc()

        logger.info(
            "Detection scan complete",
            extra={
                "tenant_id": window.tenant_id,
                "user_id": window.user_id,
                "findings": len(findings),
                "partial": bool(unavailable),
                "requested_by": caller.user_id,
            },
        )
        return DetectionReport(
            window=window,
            config_hash=self.config.config_hash(),
            partial=bool(unavailable),
            unavailable_sources=unavailable,
            findings=findings,
        )

    def _load(self, caller: CallerContext, source: str, window: DetectionWindow) -> tuple:
        start = window.start
        if source == "audit_log":
            start = window.start - timedelta(days=self.config.unusual_activity_baseline_days)

        filters = {
            "tenant_id": window.tenant_id,
            "user_id": window.user_id,
            "start": start,
            "end": window.end,
        }
        return tuple(self.ledger.iter_records(caller, source, filters, page_size=self.page_size))
