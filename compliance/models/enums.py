"""Enums for the compliance engine - the valid values for statuses, events and question kinds."""
from enum import Enum


class TrainingStatus(str, Enum):
    """Lifecycle status of a training record.

    OVERDUE and EXPIRED are derived labels: they are computed from the stored
    status, the record's dates and the current time, never written over a
    stored disposition.
    """
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    LOCKED = "LOCKED"
    OVERDUE = "OVERDUE"
    EXPIRED = "EXPIRED"


# Statuses in which the trainee can still make progress.
ACTIVE_STATUSES = (TrainingStatus.PENDING, TrainingStatus.IN_PROGRESS)


class AuditEventType(str, Enum):
    """Audit vocabulary shared with downstream subscribers."""
    ASSIGN_TRAINING = "ASSIGN_TRAINING"
    DOCUMENT_VIEWED = "DOCUMENT_VIEWED"
    DOCUMENT_ACKNOWLEDGED = "DOCUMENT_ACKNOWLEDGED"
    ASSESSMENT_STARTED = "ASSESSMENT_STARTED"
    ASSESSMENT_SUBMITTED = "ASSESSMENT_SUBMITTED"
    ASSESSMENT_PASSED = "ASSESSMENT_PASSED"
    ASSESSMENT_FAILED = "ASSESSMENT_FAILED"
    TRAINING_OVERDUE = "TRAINING_OVERDUE"
    LATE_COMPLETION = "LATE_COMPLETION"
    CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED"
    TRAINING_EXPIRED = "TRAINING_EXPIRED"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"


class EventSource(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class QuestionKind(str, Enum):
    """Answer shape expected for a question."""
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    SHORT_ANSWER = "SHORT_ANSWER"
    TRUE_FALSE = "TRUE_FALSE"


class OverrideAction(str, Enum):
    """Administrative corrections that go through the audited path."""
    EXTEND_DUE_DATE = "EXTEND_DUE_DATE"
    BACKFILL_CERTIFICATE = "BACKFILL_CERTIFICATE"


class AttemptResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
