"""Assessment configuration storage, owned by the assessment-config collaborator."""
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from compliance.clock import utcnow
from compliance.database import Base
from compliance.models.enums import QuestionKind


class AssessmentConfig(Base):
    """
    Pass threshold, attempt limit and questions for one training.

    Invariants:
    - is_locked flips to true the first time any trainee starts an attempt
    - once locked, thresholds and questions are never changed
    """
    __tablename__ = "assessment_configs"

    training_id = Column(String, primary_key=True)
    pass_percentage = Column(Integer, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    validity_days = Column(Integer, nullable=True)  # Falls back to the configured default
    is_locked = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    questions = relationship(
        "AssessmentQuestionRow",
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="AssessmentQuestionRow.position",
    )


class AssessmentQuestionRow(Base):
    """One question of an assessment. Question ids are unique within a training only."""
    __tablename__ = "assessment_questions"

    training_id = Column(String, ForeignKey("assessment_configs.training_id"), primary_key=True)
    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False)
    kind = Column(SQLEnum(QuestionKind), nullable=False)
    text = Column(String, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    correct_answer = Column(JSON, nullable=False)  # str, or bool for TRUE_FALSE

    assessment = relationship("AssessmentConfig", back_populates="questions")
