from sqlalchemy import Column, Boolean, Float, DateTime, Integer, Text, String, Index, UniqueConstraint, JSON
from sqlalchemy.sql import func
from core.database import Base
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


class AssessmentResult(Base):
    """
    Stored outcome of one assessment evaluation run.

    One row per assessment id. Reprocessing overwrites the row (last write
    wins). The full AssessmentEvaluation snapshot lives in `payload`; the
    scalar columns duplicate the fields used for filtering and listing.
    """
    __tablename__ = "assessment_result"

    assessment_id = Column(String(64), primary_key=True)
    athlete_id = Column(String(64), nullable=False, index=True)
    test_type = Column(Text, nullable=False)
    raw_score = Column(Float, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False)

    processing_status = Column(Text, nullable=False)  # complete | partial | failed
    overall_status = Column(Text, nullable=True)      # approved | under_review | needs_resubmission | rejected
    composite_score = Column(Integer, nullable=True)
    integrity_score = Column(Integer, nullable=True)
    integrity_action = Column(Text, nullable=True)
    percentile = Column(Float, nullable=True)

    payload = Column(JSON, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_assessment_result_athlete_submitted", "athlete_id", "submitted_at"),
    )


class AthleteConsent(Base):
    """
    Current consent state per athlete and processing purpose.

    Purposes: assessment_analysis, talent_identification,
    performance_analytics, data_sharing.
    """
    __tablename__ = "athlete_consent"

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(64), nullable=False, index=True)
    purpose = Column(Text, nullable=False)
    granted = Column(Boolean, default=False, nullable=False)
    granted_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("athlete_id", "purpose", name="uq_athlete_consent_purpose"),
    )


class ConsentAuditLog(Base):
    """Append-only record of every consent grant and revocation."""
    __tablename__ = "consent_audit_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(64), nullable=False, index=True)
    consent_type = Column(Text, nullable=False)
    action = Column(Text, nullable=False)  # granted | revoked
    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    source = Column(Text, nullable=True)  # api | admin | system
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DataAccessLog(Base):
    """
    Who touched an athlete's data, for what purpose, and whether it worked.

    Written by the pipeline after each integrity analysis.
    """
    __tablename__ = "data_access_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(64), nullable=False, index=True)
    accessor = Column(Text, nullable=False, default="system")
    access_type = Column(Text, nullable=False)  # e.g. integrity_analysis
    purpose = Column(Text, nullable=False)
    data_types = Column(JSON, nullable=False, default=list)
    success = Column(Boolean, nullable=False, default=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
