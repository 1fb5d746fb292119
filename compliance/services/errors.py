"""
Exceptions raised by the lifecycle engine and its collaborators.

Validation errors and AttemptsExhausted are raised before anything is
written. ConcurrentModification is transient. CertificateStoreUnavailable
aborts the whole transition. InvariantViolation is a programming error and
is never caught inside the engine.
"""
from typing import Any, Dict


class LifecycleError(Exception):
    """Base class for refusals surfaced to callers."""

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class RecordNotFound(LifecycleError):
    pass


class ValidationError(LifecycleError):
    """Rejected input; safe to retry immediately with corrected input."""


class InvalidStateTransition(ValidationError):
    def __init__(self, message: str, current_status: Any = None, **details: Any):
        if current_status is not None:
            details["current_status"] = getattr(current_status, "value", current_status)
        super().__init__(message, **details)


class IncompleteSubmission(ValidationError):
    def __init__(self, missing: int, question_ids=None):
        self.missing = missing
        super().__init__(
            f"Submission is missing answers for {missing} question(s)",
            missing=missing,
            question_ids=list(question_ids or []),
        )


class InvalidAnswer(ValidationError):
    def __init__(self, question_id: str, expected: str):
        super().__init__(
            f"Answer for question {question_id} must be of type {expected}",
            question_id=question_id,
            expected=expected,
        )


class DuplicateAssignment(ValidationError):
    pass


class AssessmentNotConfigured(ValidationError):
    pass


class AssessmentLocked(ValidationError):
    pass


class AttemptsExhausted(LifecycleError):
    def __init__(self, attempts: int, max_attempts: int):
        super().__init__(
            "Maximum assessment attempts reached. This training is LOCKED.",
            attempts=attempts,
            max_attempts=max_attempts,
        )


class ConcurrentModification(LifecycleError):
    def __init__(self, record_id: int):
        super().__init__(
            "The training record was modified concurrently, please retry",
            record_id=record_id,
        )


class CertificateStoreUnavailable(LifecycleError):
    """The certificate artifact store could not produce the artifact."""


class InvariantViolation(Exception):
    """A write that would break a persisted invariant. Fatal."""
