"""Investigation case models."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from trustline_api.db.base import Base
from trustline_api.models._ids import new_id
from trustline_api.utils.time import utcnow

CASE_STATUSES = ("open", "investigating", "resolved", "closed")
CASE_PRIORITIES = ("low", "medium", "high", "critical")
CASE_TYPES = ("anomaly", "security", "compliance", "abuse", "other")
NOTE_TYPES = ("note", "finding", "evidence", "action")
EVIDENCE_TYPES = ("audit_log", "session", "login_attempt", "password_change", "file", "other")


class InvestigationCase(Base):
    """Investigation case, mutated only through status transitions."""

    __tablename__ = "investigation_cases"

    id = Column(String(36), primary_key=True, default=new_id)
    case_number = Column(String(64), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="open", nullable=False, index=True)
    priority = Column(String(20), default="medium", nullable=False, index=True)
    case_type = Column(String(20), nullable=False, index=True)
    related_user_id = Column(String(64), nullable=True, index=True)
    related_tenant_id = Column(String(64), nullable=True, index=True)
    assigned_to = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=False)
    resolved_by = Column(String(64), nullable=True)
    opened_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    investigated_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    resolution = Column(Text, nullable=True)
    resolution_notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    notes = relationship("CaseNote", back_populates="case")
    evidence = relationship("CaseEvidence", back_populates="case")


class CaseNote(Base):
    """Append-only note on a case."""

    __tablename__ = "investigation_case_notes"

    id = Column(String(36), primary_key=True, default=new_id)
    case_id = Column(String(36), ForeignKey("investigation_cases.id"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    note_type = Column(String(20), default="note", nullable=False)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    case = relationship("InvestigationCase", back_populates="notes")


class CaseEvidence(Base):
    """Weak reference from a case to a ledger or file record."""

    __tablename__ = "investigation_case_evidence"

    id = Column(String(36), primary_key=True, default=new_id)
    case_id = Column(String(36), ForeignKey("investigation_cases.id"), nullable=False, index=True)
    evidence_type = Column(String(32), nullable=False)
    evidence_id = Column(String(255), nullable=False)
    evidence_source = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    added_by = Column(String(64), nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    case = relationship("InvestigationCase", back_populates="evidence")

    __table_args__ = (
        UniqueConstraint("case_id", "evidence_type", "evidence_id", name="uq_case_evidence_ref"),
    )


class CaseNumberSequence(Base):
    """Single-row counter backing case numbers. Numbers are never reused."""

    __tablename__ = "case_number_sequences"

    name = Column(String(32), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class EvidenceFile(Base):
    """Metadata row for a file attached out-of-band, resolvable as ``file`` evidence."""

    __tablename__ = "evidence_files"

    id = Column(String(36), primary_key=True, default=new_id)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=True)
    sha256 = Column(String(64), nullable=True)
    storage_ref = Column(String(512), nullable=False)
    uploaded_by = Column(String(64), nullable=False)
    uploaded_at = Column(DateTime, default=utcnow, nullable=False)
