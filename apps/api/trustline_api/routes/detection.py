"""Anomaly detection endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from trustline_api.auth.context import CallerContext, get_caller
from trustline_api.db.session import get_db
from trustline_api.detection.service import DetectionService

router = APIRouter(prefix="/v1", tags=["detection"])


@router.post("/detection/anomalies")
async def detect_anomalies(
    window: dict,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """
    Run a synchronous scan over a ledger window.

    Body: ``{"from": ..., "to": ..., "tenant_id": ..., "user_id": ...}``.
    Findings are recomputed on every call and not stored.
    """
    report = DetectionService(db).detect_anomalies(caller, window)
    return report.model_dump(mode="json")
