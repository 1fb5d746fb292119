"""
Record store for training records.

Every status change is committed through compare_and_swap: a single
conditional UPDATE on (id, status, assessment_attempts). The store never
commits; the caller owns the transaction.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from compliance.models.attempt import AssessmentAttempt
from compliance.models.domain import TrainingRecord
from compliance.models.enums import ACTIVE_STATUSES, AttemptResult, TrainingStatus
from compliance.services.errors import InvariantViolation, RecordNotFound

logger = logging.getLogger(__name__)

ANY = object()

# Written only through attach_certificate.
_CERTIFICATE_FIELDS = ("certificate_id", "certificate_url")
_IDENTITY_FIELDS = ("id", "user_id", "training_id")
# Set once, on the transition into COMPLETED.
_COMPLETION_FIELDS = ("completed_date", "completed_late")


class RecordStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int) -> TrainingRecord:
        """Read the record as currently committed, discarding any cached state."""
        record = self.db.execute(
            select(TrainingRecord)
            .where(TrainingRecord.id == record_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise RecordNotFound(f"Training record {record_id} not found", record_id=record_id)
        return record

    def find_assignment(self, user_id: str, training_id: str) -> Optional[TrainingRecord]:
        return self.db.execute(
            select(TrainingRecord).where(
                TrainingRecord.user_id == user_id,
                TrainingRecord.training_id == training_id,
            )
        ).scalar_one_or_none()

    def list_records(self, user_id: Optional[str] = None, training_id: Optional[str] = None) -> List[TrainingRecord]:
        query = select(TrainingRecord)
        if user_id:
            query = query.where(TrainingRecord.user_id == user_id)
        if training_id:
            query = query.where(TrainingRecord.training_id == training_id)
        return list(self.db.execute(query.order_by(TrainingRecord.id)).scalars())

    def add(self, record: TrainingRecord) -> TrainingRecord:
        self.db.add(record)
        self.db.flush()
        return record

    def compare_and_swap(
        self,
        record_id: int,
        expected_status: TrainingStatus,
        expected_attempts: int,
        changes: Dict[str, Any],
        expected_derived_status: Any = ANY,
    ) -> bool:
        """
        Apply changes only if the stored status and attempt count still match.

        Returns False when another writer got there first.
        """
        for name in _CERTIFICATE_FIELDS + _IDENTITY_FIELDS:
            if name in changes:
                raise InvariantViolation(f"{name} cannot be changed through compare_and_swap")
        if expected_status == TrainingStatus.COMPLETED and any(name in changes for name in _COMPLETION_FIELDS):
            raise InvariantViolation("Completion fields are immutable once a record is COMPLETED")
        new_attempts = changes.get("assessment_attempts")
        if new_attempts is not None and new_attempts < expected_attempts:
            raise InvariantViolation(
                f"assessment_attempts cannot decrease ({expected_attempts} -> {new_attempts})"
            )

        stmt = (
            update(TrainingRecord)
            .where(
                TrainingRecord.id == record_id,
                TrainingRecord.status == expected_status,
                TrainingRecord.assessment_attempts == expected_attempts,
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if expected_derived_status is not ANY:
            if expected_derived_status is None:
                stmt = stmt.where(TrainingRecord.derived_status.is_(None))
            else:
                stmt = stmt.where(TrainingRecord.derived_status == expected_derived_status)

        swapped = self.db.execute(stmt).rowcount == 1
        if not swapped:
            logger.warning(
                "Compare-and-swap lost",
                extra={"record_id": record_id, "expected_status": expected_status.value},
            )
        return swapped

    def attach_certificate(self, record_id: int, certificate_id: str, certificate_url: str) -> None:
        """Write the certificate fields once. Re-attaching the same pair is a no-op."""
        result = self.db.execute(
            update(TrainingRecord)
            .where(
                TrainingRecord.id == record_id,
                TrainingRecord.certificate_id.is_(None),
                TrainingRecord.certificate_url.is_(None),
            )
            .values(certificate_id=certificate_id, certificate_url=certificate_url)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        existing = self.db.execute(
            select(TrainingRecord.certificate_id, TrainingRecord.certificate_url)
            .where(TrainingRecord.id == record_id)
        ).one_or_none()
        if existing is None:
            raise RecordNotFound(f"Training record {record_id} not found", record_id=record_id)
        if tuple(existing) != (certificate_id, certificate_url):
            raise InvariantViolation(
                f"IMMUTABILITY VIOLATION: record {record_id} already carries certificate {existing[0]}"
            )

    def append_attempt(
        self,
        record: TrainingRecord,
        attempt_number: int,
        answers: Dict[str, Any],
        score: int,
        passed: bool,
        correct_count: int,
        total_questions: int,
        attempted_at: datetime,
    ) -> AssessmentAttempt:
        """Add an attempt to the caller's transaction."""
        attempt = AssessmentAttempt(
            training_record_id=record.id,
            user_id=record.user_id,
            training_id=record.training_id,
            attempt_number=attempt_number,
            answers=dict(answers),
            score=score,
            result=AttemptResult.PASS if passed else AttemptResult.FAIL,
            correct_count=correct_count,
            total_questions=total_questions,
            attempted_at=attempted_at,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def list_attempts(self, record_id: int) -> List[AssessmentAttempt]:
        return list(self.db.execute(
            select(AssessmentAttempt)
            .where(AssessmentAttempt.training_record_id == record_id)
            .order_by(AssessmentAttempt.attempt_number)
        ).scalars())

    def overdue_candidates(self, now: datetime) -> List[TrainingRecord]:
        """Active records past due whose lapse has not been audited yet."""
        return list(self.db.execute(
            select(TrainingRecord).where(
                TrainingRecord.status.in_(ACTIVE_STATUSES),
                TrainingRecord.due_date < now,
                or_(
                    TrainingRecord.derived_status.is_(None),
                    TrainingRecord.derived_status != TrainingStatus.OVERDUE,
                ),
            ).order_by(TrainingRecord.id)
        ).scalars())

    def expiry_candidates(self, now: datetime) -> List[TrainingRecord]:
        """Completed records past their certificate expiry not yet audited as expired."""
        return list(self.db.execute(
            select(TrainingRecord).where(
                TrainingRecord.status == TrainingStatus.COMPLETED,
                TrainingRecord.expiry_date.is_not(None),
                TrainingRecord.expiry_date < now,
                or_(
                    TrainingRecord.derived_status.is_(None),
                    TrainingRecord.derived_status != TrainingStatus.EXPIRED,
                ),
            ).order_by(TrainingRecord.id)
        ).scalars())
