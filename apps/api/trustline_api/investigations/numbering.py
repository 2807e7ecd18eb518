"""Case number allocation: ``<prefix>-<YYYYMMDD>-<sequence>``."""

from datetime import datetime

from sqlalchemy.orm import Session

from trustline_api.models import CaseNumberSequence
from trustline_api.settings import get_settings

SEQUENCE_NAME = "investigation_case"


def next_case_number(db: Session, now: datetime) -> str:
    """
    Allocate the next case number inside the caller's transaction.

    The counter row is locked for update, so concurrent creators serialize
    here and a number is never handed out twice. The sequence is global,
    not per day, so numbers stay monotonic across dates.
    """
    settings = get_settings()
    row = (
        db.query(CaseNumberSequence)
        .filter(CaseNumberSequence.name == SEQUENCE_NAME)
        .with_for_update()
        .one_or_none()
    )
    if row is None:
        row = CaseNumberSequence(name=SEQUENCE_NAME, last_value=0, updated_at=now)
        db.add(row)

    row.last_value += 1
    row.updated_at = now
    db.flush()

    sequence = str(row.last_value).zfill(settings.case_number_width)
    return f"{settings.case_number_prefix}-{now:%Y%m%d}-{sequence}"
