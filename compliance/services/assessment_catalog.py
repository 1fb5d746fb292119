"""
Assessment configuration lookups.

The lifecycle engine only ever sees an immutable snapshot of a training's
assessment, taken once per call.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from compliance.models.assessment import AssessmentConfig, AssessmentQuestionRow
from compliance.models.enums import QuestionKind
from compliance.services.errors import AssessmentLocked, AssessmentNotConfigured, ValidationError
from compliance.services.scoring import QuestionSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssessmentSnapshot:
    training_id: str
    pass_percentage: int
    max_attempts: int
    is_locked: bool
    questions: Tuple[QuestionSnapshot, ...]
    validity_days: Optional[int] = None


def _validate_question(question: QuestionSnapshot) -> None:
    if question.kind == QuestionKind.MULTIPLE_CHOICE and not question.options:
        raise ValidationError(f"Question {question.id} needs at least one option")
    if not isinstance(question.correct_answer, question.expected_type):
        raise ValidationError(
            f"Correct answer of question {question.id} must be a {question.expected_type.__name__}"
        )


class AssessmentCatalog:
    """Reads and maintains assessment configuration keyed by training id."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, training_id: str) -> Optional[AssessmentConfig]:
        return self.db.get(AssessmentConfig, training_id)

    def configure(
        self,
        training_id: str,
        pass_percentage: int,
        max_attempts: int,
        questions: Iterable[QuestionSnapshot],
        validity_days: Optional[int] = None,
    ) -> AssessmentSnapshot:
        """Create or replace a training's assessment. Refused once locked."""
        questions = list(questions)
        if not 0 <= pass_percentage <= 100:
            raise ValidationError("pass_percentage must be between 0 and 100")
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        if not questions:
            raise ValidationError("An assessment needs at least one question")
        if validity_days is not None and validity_days < 1:
            raise ValidationError("validity_days must be positive")
        for question in questions:
            _validate_question(question)
        ids = [q.id for q in questions]
        if len(set(ids)) != len(ids):
            raise ValidationError("Question ids must be unique within an assessment")

        config = self._get(training_id)
        if config is not None and config.is_locked:
            raise AssessmentLocked(
                f"Assessment for training {training_id} is locked: attempts have already started",
                training_id=training_id,
            )
        try:
            if config is None:
                config = AssessmentConfig(training_id=training_id)
                self.db.add(config)

            config.pass_percentage = pass_percentage
            config.max_attempts = max_attempts
            config.validity_days = validity_days
            # Old rows go first so the replacement can reuse their ids
            config.questions = []
            self.db.flush()
            config.questions = [
                AssessmentQuestionRow(
                    id=q.id,
                    position=position,
                    kind=q.kind,
                    text=q.text,
                    options=list(q.options),
                    correct_answer=q.correct_answer,
                )
                for position, q in enumerate(questions)
            ]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Assessment configured",
            extra={"training_id": training_id, "question_count": len(questions)},
        )
        return self.snapshot(training_id)

    def snapshot(self, training_id: str) -> AssessmentSnapshot:
        config = self._get(training_id)
        if config is None:
            raise AssessmentNotConfigured(
                f"No assessment is configured for training {training_id}",
                training_id=training_id,
            )
        return AssessmentSnapshot(
            training_id=config.training_id,
            pass_percentage=config.pass_percentage,
            max_attempts=config.max_attempts,
            is_locked=config.is_locked,
            validity_days=config.validity_days,
            questions=tuple(
                QuestionSnapshot(
                    id=row.id,
                    text=row.text,
                    kind=row.kind,
                    correct_answer=row.correct_answer,
                    options=tuple(row.options or ()),
                )
                for row in config.questions
            ),
        )

    def mark_locked(self, training_id: str) -> None:
        """Lock the configuration. Joins the caller's transaction; does not commit."""
        config = self._get(training_id)
        if config is None:
            raise AssessmentNotConfigured(
                f"No assessment is configured for training {training_id}",
                training_id=training_id,
            )
        if not config.is_locked:
            config.is_locked = True
            self.db.flush()
