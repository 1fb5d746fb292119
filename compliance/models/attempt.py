"""
Assessment attempt history - one row per accepted submission.

The submitted answers are kept verbatim so that a score can be re-derived
against the locked assessment when a result is disputed.
"""
from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    event,
)

from compliance.clock import utcnow
from compliance.database import Base
from compliance.models.enums import AttemptResult
from compliance.services.errors import InvariantViolation


class AssessmentAttempt(Base):
    """
    Immutable attempt.

    Invariants:
    - Written in the same transaction as the submission it records
    - Never edited or deleted
    - attempt_number is unique per training record
    """
    __tablename__ = "assessment_attempts"
    __table_args__ = (
        UniqueConstraint("training_record_id", "attempt_number", name="uq_assessment_attempts_number"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    training_record_id = Column(Integer, ForeignKey("training_records.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    training_id = Column(String, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    answers = Column(JSON, nullable=False)
    score = Column(Integer, nullable=False)
    result = Column(SQLEnum(AttemptResult), nullable=False)
    correct_count = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    attempted_at = Column(DateTime, nullable=False, default=utcnow)


@event.listens_for(AssessmentAttempt, "before_update")
def _refuse_update(mapper, connection, target):
    raise InvariantViolation(f"Assessment attempts are immutable (attempt {target.id})")


@event.listens_for(AssessmentAttempt, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise InvariantViolation(f"Assessment attempts cannot be deleted (attempt {target.id})")
