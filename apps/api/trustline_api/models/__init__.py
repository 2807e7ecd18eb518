"""Database models - import all models here for Alembic discovery."""

from trustline_api.models.investigation import (
    CaseEvidence,
    CaseNote,
    CaseNumberSequence,
    EvidenceFile,
    InvestigationCase,
)
from trustline_api.models.ledger import AuditLogEntry, LoginAttempt, PasswordChangeRecord, UserSession
from trustline_api.models.operator import OperatorKey

__all__ = [
    "LoginAttempt",
    "UserSession",
    "PasswordChangeRecord",
    "AuditLogEntry",
    "InvestigationCase",
    "CaseNote",
    "CaseEvidence",
    "CaseNumberSequence",
    "EvidenceFile",
    "OperatorKey",
]
