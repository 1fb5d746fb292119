"""
Lifecycle engine for training records.

This is the only writer of TrainingRecord.status and of audit entries. Every
operation reads the record, validates it against the transition table,
and then commits status, certificate and audit entries as one unit behind
a compare-and-swap on (record id, status, attempts). A lost swap is retried
against the freshly read record; rejected actions write nothing.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compliance.clock import Clock, SystemClock
from compliance.config import Settings, settings as default_settings
from compliance.models.attempt import AssessmentAttempt
from compliance.models.domain import TrainingRecord
from compliance.models.enums import (
    ACTIVE_STATUSES,
    AuditEventType,
    EventSource,
    OverrideAction,
    TrainingStatus,
)
from compliance.services.assessment_catalog import AssessmentCatalog
from compliance.services.audit_log import AuditLog
from compliance.services.certificates import CertificateIssuer
from compliance.services.errors import (
    AssessmentNotConfigured,
    AttemptsExhausted,
    ConcurrentModification,
    DuplicateAssignment,
    InvalidStateTransition,
    ValidationError,
)
from compliance.services.record_store import ANY, RecordStore
from compliance.services.scoring import QuestionResult, score
from compliance.services.status import effective_status

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    event_type: AuditEventType
    previous_status: Any = None
    new_status: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Transition:
    """A validated change, ready to be committed."""
    expected_status: TrainingStatus
    expected_attempts: int
    changes: Dict[str, Any]
    events: List[AuditEvent]
    expected_derived_status: Any = ANY
    # Extra writes made after the swap is won, inside the same transaction.
    after_swap: Optional[Callable[[TrainingRecord], List[AuditEvent]]] = None
    outcome: Any = None


@dataclass
class SubmissionResult:
    status: TrainingStatus
    score: int
    passed: bool
    attempt_number: int
    max_attempts: int
    certificate_id: Optional[str] = None
    certificate_url: Optional[str] = None
    expiry_date: Optional[datetime] = None
    completed_late: bool = False
    results: List[QuestionResult] = field(default_factory=list)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class LifecycleEngine:
    """Validates and commits every transition of a training record."""

    def __init__(
        self,
        db: Session,
        issuer: CertificateIssuer,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        catalog: Optional[AssessmentCatalog] = None,
    ):
        self.db = db
        self.issuer = issuer
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.catalog = catalog or AssessmentCatalog(db)
        self.store = RecordStore(db)
        self.audit = AuditLog(db)

    # Reads

    def get_record(self, record_id: int) -> TrainingRecord:
        return self.store.get(record_id)

    def effective_status(self, record: TrainingRecord) -> TrainingStatus:
        return effective_status(record, self.clock.now())

    def list_attempts(self, record_id: int) -> List[AssessmentAttempt]:
        self.store.get(record_id)
        return self.store.list_attempts(record_id)

    # Commit path

    def _commit(
        self,
        record_id: int,
        plan: Callable[[TrainingRecord], Optional[Transition]],
        source: EventSource,
        ip_address: Optional[str] = None,
    ) -> Optional[Transition]:
        """
        Plan against the stored record and commit it behind a compare-and-swap.

        Returns the committed transition, or None when the plan decided
        there was nothing to do.
        """
        for attempt in range(self.settings.cas_retry_limit + 1):
            record = self.store.get(record_id)
            try:
                transition = plan(record)
            except Exception:
                # Nothing has been written yet; release the read transaction.
                self.db.rollback()
                raise
            if transition is None:
                self.db.rollback()
                return None

            try:
                swapped = self.store.compare_and_swap(
                    record.id,
                    transition.expected_status,
                    transition.expected_attempts,
                    transition.changes,
                    expected_derived_status=transition.expected_derived_status,
                )
                if not swapped:
                    self.db.rollback()
                    logger.warning(
                        "Concurrent update on training record, retrying",
                        extra={"record_id": record_id, "attempt": attempt + 1},
                    )
                    continue

                events = list(transition.events)
                if transition.after_swap is not None:
                    events.extend(transition.after_swap(record))

                now = self.clock.now()
                for audit_event in events:
                    self.audit.append(
                        audit_event.event_type,
                        source,
                        user_id=record.user_id,
                        training_id=record.training_id,
                        training_record_id=record.id,
                        previous_status=audit_event.previous_status,
                        new_status=audit_event.new_status,
                        metadata=audit_event.metadata,
                        ip_address=ip_address,
                        timestamp=now,
                    )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            logger.info(
                "Training record transition committed",
                extra={
                    "record_id": record_id,
                    "events": [e.event_type.value for e in events],
                    "status": transition.changes.get("status", transition.expected_status).value,
                },
            )
            return transition

        raise ConcurrentModification(record_id)

    def _validity(self, training_id: str) -> timedelta:
        try:
            days = self.catalog.snapshot(training_id).validity_days
        except AssessmentNotConfigured:
            days = None
        return timedelta(days=days or self.settings.certificate_validity_days)

    # Operations

    def assign_training(
        self,
        user_id: str,
        training_id: str,
        due_date: datetime,
        assigned_by: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TrainingRecord:
        """Create a PENDING record for a (user, training) pair."""
        if self.store.find_assignment(user_id, training_id) is not None:
            raise DuplicateAssignment(
                f"Training {training_id} is already assigned to user {user_id}",
                user_id=user_id,
                training_id=training_id,
            )
        now = self.clock.now()
        record = TrainingRecord(
            user_id=user_id,
            training_id=training_id,
            assigned_by=assigned_by,
            assigned_date=now,
            due_date=due_date,
            status=TrainingStatus.PENDING,
            assessment_attempts=0,
            document_viewed=False,
            document_acknowledged=False,
            passed=False,
            completed_late=False,
        )
        try:
            self.store.add(record)
            self.audit.append(
                AuditEventType.ASSIGN_TRAINING,
                EventSource.ADMIN,
                user_id=user_id,
                training_id=training_id,
                training_record_id=record.id,
                new_status=TrainingStatus.PENDING,
                metadata={"due_date": _iso(due_date), "assigned_by": assigned_by},
                ip_address=ip_address,
                timestamp=now,
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateAssignment(
                f"Training {training_id} is already assigned to user {user_id}",
                user_id=user_id,
                training_id=training_id,
            ) from exc
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Training assigned",
            extra={"record_id": record.id, "user_id": user_id, "training_id": training_id},
        )
        return self.store.get(record.id)

    def view_document(self, record_id: int, ip_address: Optional[str] = None) -> TrainingRecord:
        def plan(record: TrainingRecord) -> Transition:
            if record.status not in ACTIVE_STATUSES:
                raise InvalidStateTransition(
                    "The document can only be viewed on an active training",
                    current_status=record.status,
                )
            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes={"document_viewed": True},
                events=[AuditEvent(AuditEventType.DOCUMENT_VIEWED, record.status, record.status)],
            )

        self._commit(record_id, plan, EventSource.USER, ip_address)
        return self.store.get(record_id)

    def acknowledge(self, record_id: int, ip_address: Optional[str] = None) -> TrainingRecord:
        def plan(record: TrainingRecord) -> Transition:
            if record.status not in ACTIVE_STATUSES:
                raise InvalidStateTransition(
                    "Only an active training can be acknowledged",
                    current_status=record.status,
                )
            if not record.document_viewed:
                raise InvalidStateTransition(
                    "The document must be viewed before it can be acknowledged",
                    current_status=record.status,
                )
            if record.document_acknowledged:
                raise InvalidStateTransition(
                    "Document already acknowledged",
                    current_status=record.status,
                )
            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes={
                    "document_acknowledged": True,
                    "acknowledged_at": self.clock.now(),
                    "status": TrainingStatus.IN_PROGRESS,
                },
                events=[AuditEvent(
                    AuditEventType.DOCUMENT_ACKNOWLEDGED,
                    record.status,
                    TrainingStatus.IN_PROGRESS,
                )],
            )

        self._commit(record_id, plan, EventSource.USER, ip_address)
        return self.store.get(record_id)

    def start_assessment(self, record_id: int, ip_address: Optional[str] = None) -> TrainingRecord:
        def plan(record: TrainingRecord) -> Transition:
            assessment = self.catalog.snapshot(record.training_id)
            if record.status == TrainingStatus.LOCKED:
                raise AttemptsExhausted(record.assessment_attempts, assessment.max_attempts)
            if record.status != TrainingStatus.IN_PROGRESS:
                raise InvalidStateTransition(
                    "An assessment can only be started on a training in progress",
                    current_status=record.status,
                )
            if not record.document_acknowledged:
                raise InvalidStateTransition(
                    "The document must be acknowledged before the assessment",
                    current_status=record.status,
                )
            if record.assessment_attempts >= assessment.max_attempts:
                raise AttemptsExhausted(record.assessment_attempts, assessment.max_attempts)

            def lock_assessment(_record: TrainingRecord) -> List[AuditEvent]:
                self.catalog.mark_locked(record.training_id)
                return []

            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes={"started_date": record.started_date or self.clock.now()},
                events=[AuditEvent(
                    AuditEventType.ASSESSMENT_STARTED,
                    record.status,
                    record.status,
                    {
                        "attempt_number": record.assessment_attempts + 1,
                        "max_attempts": assessment.max_attempts,
                    },
                )],
                after_swap=lock_assessment,
            )

        self._commit(record_id, plan, EventSource.USER, ip_address)
        return self.store.get(record_id)

    def submit_assessment(
        self,
        record_id: int,
        answers: Mapping[str, Any],
        ip_address: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Score a submission and move the record to COMPLETED, IN_PROGRESS or LOCKED.

        A pass issues the certificate inside the same transaction. Every
        accepted submission is kept, answers included, in the attempt history.
        """
        def plan(record: TrainingRecord) -> Transition:
            assessment = self.catalog.snapshot(record.training_id)
            if (
                record.status == TrainingStatus.LOCKED
                or record.assessment_attempts >= assessment.max_attempts
            ):
                raise AttemptsExhausted(record.assessment_attempts, assessment.max_attempts)
            if record.status != TrainingStatus.IN_PROGRESS:
                raise InvalidStateTransition(
                    "Assessments can only be submitted on a training in progress",
                    current_status=record.status,
                )
            if record.started_date is None:
                raise InvalidStateTransition(
                    "The assessment must be started before answers are submitted",
                    current_status=record.status,
                )

            result = score(assessment.questions, answers, assessment.pass_percentage)
            now = self.clock.now()
            attempt_number = record.assessment_attempts + 1
            changes: Dict[str, Any] = {
                "assessment_attempts": attempt_number,
                "last_attempt_date": now,
                "score": result.score,
                "passed": result.passed,
            }
            metadata = {
                "score": result.score,
                "passed": result.passed,
                "attempt_number": attempt_number,
                "max_attempts": assessment.max_attempts,
                "total_questions": result.total_questions,
                "correct_count": result.correct_count,
            }
            outcome = SubmissionResult(
                status=TrainingStatus.IN_PROGRESS,
                score=result.score,
                passed=result.passed,
                attempt_number=attempt_number,
                max_attempts=assessment.max_attempts,
                results=result.results,
            )

            def record_attempt(swapped: TrainingRecord) -> None:
                self.store.append_attempt(
                    swapped,
                    attempt_number,
                    answers,
                    score=result.score,
                    passed=result.passed,
                    correct_count=result.correct_count,
                    total_questions=result.total_questions,
                    attempted_at=now,
                )

            if not result.passed:
                new_status = (
                    TrainingStatus.LOCKED
                    if attempt_number >= assessment.max_attempts
                    else TrainingStatus.IN_PROGRESS
                )
                changes["status"] = new_status
                outcome.status = new_status
                metadata["locked"] = new_status == TrainingStatus.LOCKED

                def record_failure(swapped: TrainingRecord) -> List[AuditEvent]:
                    record_attempt(swapped)
                    return []

                return Transition(
                    expected_status=record.status,
                    expected_attempts=record.assessment_attempts,
                    changes=changes,
                    events=[AuditEvent(AuditEventType.ASSESSMENT_FAILED, record.status, new_status, metadata)],
                    after_swap=record_failure,
                    outcome=outcome,
                )

            completed_late = now > record.due_date
            validity = timedelta(days=assessment.validity_days or self.settings.certificate_validity_days)
            changes.update(
                status=TrainingStatus.COMPLETED,
                completed_date=now,
                completed_late=completed_late,
                expiry_date=now + validity,
            )
            metadata["completed_late"] = completed_late
            outcome.status = TrainingStatus.COMPLETED
            outcome.completed_late = completed_late

            def issue_certificate(swapped: TrainingRecord) -> List[AuditEvent]:
                record_attempt(swapped)
                grant = self.issuer.issue(self.db, swapped.id, result.score, now, validity)
                self.store.attach_certificate(swapped.id, grant.certificate_id, grant.certificate_url)
                outcome.certificate_id = grant.certificate_id
                outcome.certificate_url = grant.certificate_url
                outcome.expiry_date = grant.expiry_date
                events = [AuditEvent(
                    AuditEventType.CERTIFICATE_ISSUED,
                    TrainingStatus.COMPLETED,
                    TrainingStatus.COMPLETED,
                    {
                        "certificate_id": grant.certificate_id,
                        "certificate_url": grant.certificate_url,
                        "expiry_date": _iso(grant.expiry_date),
                    },
                )]
                if completed_late:
                    events.append(AuditEvent(
                        AuditEventType.LATE_COMPLETION,
                        TrainingStatus.COMPLETED,
                        TrainingStatus.COMPLETED,
                        {"due_date": _iso(swapped.due_date), "completed_date": _iso(now)},
                    ))
                return events

            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes=changes,
                events=[AuditEvent(
                    AuditEventType.ASSESSMENT_PASSED,
                    record.status,
                    TrainingStatus.COMPLETED,
                    metadata,
                )],
                after_swap=issue_certificate,
                outcome=outcome,
            )

        transition = self._commit(record_id, plan, EventSource.USER, ip_address)
        return transition.outcome

    def mark_overdue(self, record_id: int) -> bool:
        """Audit the lapse of an active record past its due date, once."""
        def plan(record: TrainingRecord) -> Optional[Transition]:
            now = self.clock.now()
            if (
                record.status not in ACTIVE_STATUSES
                or record.due_date >= now
                or record.derived_status == TrainingStatus.OVERDUE
            ):
                return None
            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes={"derived_status": TrainingStatus.OVERDUE},
                expected_derived_status=record.derived_status,
                events=[AuditEvent(
                    AuditEventType.TRAINING_OVERDUE,
                    record.status,
                    TrainingStatus.OVERDUE,
                    {"due_date": _iso(record.due_date)},
                )],
            )

        return self._commit(record_id, plan, EventSource.SYSTEM) is not None

    def mark_expired(self, record_id: int) -> bool:
        """Audit the expiry of a completed record's certificate, once."""
        def plan(record: TrainingRecord) -> Optional[Transition]:
            now = self.clock.now()
            if (
                record.status != TrainingStatus.COMPLETED
                or record.expiry_date is None
                or record.expiry_date >= now
                or record.derived_status == TrainingStatus.EXPIRED
            ):
                return None
            return Transition(
                expected_status=record.status,
                expected_attempts=record.assessment_attempts,
                changes={"derived_status": TrainingStatus.EXPIRED},
                expected_derived_status=record.derived_status,
                events=[AuditEvent(
                    AuditEventType.TRAINING_EXPIRED,
                    record.status,
                    TrainingStatus.EXPIRED,
                    {
                        "certificate_id": record.certificate_id,
                        "expiry_date": _iso(record.expiry_date),
                    },
                )],
            )

        return self._commit(record_id, plan, EventSource.SYSTEM) is not None

    def admin_override(
        self,
        record_id: int,
        actor_id: str,
        reason: str,
        action: OverrideAction,
        due_date: Optional[datetime] = None,
        ip_address: Optional[str] = None,
    ) -> TrainingRecord:
        """
        Apply an audited administrative correction.

        Authorization is checked by the caller; the actor and reason are
        recorded on the audit entry.
        """
        if not actor_id or not actor_id.strip():
            raise ValidationError("An override requires the acting administrator")
        if not reason or not reason.strip():
            raise ValidationError("An override requires a reason")

        def override_event(record: TrainingRecord, extra: Dict[str, Any]) -> AuditEvent:
            return AuditEvent(
                AuditEventType.ADMIN_OVERRIDE,
                record.status,
                record.status,
                {"action": action.value, "actor_id": actor_id, "reason": reason, **extra},
            )

        def plan(record: TrainingRecord) -> Transition:
            if action == OverrideAction.EXTEND_DUE_DATE:
                if record.status not in ACTIVE_STATUSES:
                    raise InvalidStateTransition(
                        "Due dates can only be extended on an active training",
                        current_status=record.status,
                    )
                if due_date is None or due_date <= self.clock.now():
                    raise ValidationError("The new due date must be in the future")
                return Transition(
                    expected_status=record.status,
                    expected_attempts=record.assessment_attempts,
                    # A later lapse is a new overdue transition and gets audited again.
                    changes={"due_date": due_date, "derived_status": None},
                    events=[override_event(record, {
                        "previous_due_date": _iso(record.due_date),
                        "new_due_date": _iso(due_date),
                    })],
                )

            if action == OverrideAction.BACKFILL_CERTIFICATE:
                if record.status != TrainingStatus.COMPLETED:
                    raise InvalidStateTransition(
                        "Certificates can only be backfilled on a completed training",
                        current_status=record.status,
                    )
                if record.certificate_id is not None:
                    raise InvalidStateTransition(
                        "This training record already has a certificate",
                        current_status=record.status,
                    )
                if record.score is None or record.completed_date is None:
                    raise ValidationError("A completed record without score or completion date cannot be certified")
                validity = self._validity(record.training_id)
                completed_date = record.completed_date

                def backfill(swapped: TrainingRecord) -> List[AuditEvent]:
                    grant = self.issuer.issue(self.db, swapped.id, swapped.score, completed_date, validity)
                    self.store.attach_certificate(swapped.id, grant.certificate_id, grant.certificate_url)
                    return [AuditEvent(
                        AuditEventType.CERTIFICATE_ISSUED,
                        TrainingStatus.COMPLETED,
                        TrainingStatus.COMPLETED,
                        {
                            "certificate_id": grant.certificate_id,
                            "certificate_url": grant.certificate_url,
                            "expiry_date": _iso(grant.expiry_date),
                            "backfilled": True,
                        },
                    )]

                return Transition(
                    expected_status=record.status,
                    expected_attempts=record.assessment_attempts,
                    changes={"expiry_date": record.expiry_date or completed_date + validity},
                    events=[override_event(record, {})],
                    after_swap=backfill,
                )

            raise ValidationError(f"Unsupported override action {action}")

        self._commit(record_id, plan, EventSource.ADMIN, ip_address)
        return self.store.get(record_id)
