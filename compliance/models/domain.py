"""Domain models - training records and the certificates they earn."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from compliance.clock import utcnow
from compliance.database import Base
from compliance.models.enums import TrainingStatus
from compliance.services.errors import InvariantViolation


class TrainingRecord(Base):
    """
    One record per (user, training) assignment.

    Invariants enforced here:
    - certificate_id and certificate_url are write-once
    - assessment_attempts never decreases
    Status changes are made only by the lifecycle engine through the
    record store's compare-and-swap.
    """
    __tablename__ = "training_records"
    __table_args__ = (
        UniqueConstraint("user_id", "training_id", name="uq_training_records_assignment"),
        Index("ix_training_records_status_due", "status", "due_date"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    training_id = Column(String, nullable=False, index=True)
    assigned_by = Column(String, nullable=True)

    # Temporal
    assigned_date = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False)
    started_date = Column(DateTime, nullable=True)
    last_attempt_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)

    # Progress
    document_viewed = Column(Boolean, nullable=False, default=False)
    document_acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)

    # Assessment
    assessment_attempts = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=False, default=False)

    status = Column(SQLEnum(TrainingStatus), nullable=False, default=TrainingStatus.PENDING)
    # Last derived label the sweeper audited (OVERDUE/EXPIRED)
    derived_status = Column(SQLEnum(TrainingStatus), nullable=True)

    certificate_id = Column(String, nullable=True, unique=True)
    certificate_url = Column(String, nullable=True)
    completed_late = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    certificate = relationship("TrainingCertificate", back_populates="training_record", uselist=False)

    @validates("certificate_id", "certificate_url")
    def _validate_certificate(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise InvariantViolation(
                f"IMMUTABILITY VIOLATION: {key} is already set on record {self.id}"
            )
        return value

    @validates("assessment_attempts")
    def _validate_attempts(self, key, value):
        current = self.assessment_attempts
        if current is not None and value is not None and value < current:
            raise InvariantViolation(
                f"assessment_attempts cannot decrease ({current} -> {value})"
            )
        return value


class TrainingCertificate(Base):
    """
    Issued certificate, one per training record.

    The unique training_record_id is what makes issuance idempotent.
    """
    __tablename__ = "training_certificates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    certificate_id = Column(String, nullable=False, unique=True)
    training_record_id = Column(Integer, ForeignKey("training_records.id"), nullable=False, unique=True)
    user_id = Column(String, nullable=False)
    training_id = Column(String, nullable=False)
    score = Column(Integer, nullable=False)
    certificate_url = Column(String, nullable=False)
    issue_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    training_record = relationship("TrainingRecord", back_populates="certificate")
