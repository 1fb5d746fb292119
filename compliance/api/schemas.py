"""Pydantic schemas for request/response validation."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from compliance.models.enums import (
    AttemptResult,
    AuditEventType,
    EventSource,
    OverrideAction,
    QuestionKind,
    TrainingStatus,
)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Assessment configuration schemas
class QuestionIn(BaseModel):
    id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    kind: QuestionKind = QuestionKind.MULTIPLE_CHOICE
    options: List[str] = []
    correct_answer: Union[bool, str]


class AssessmentConfigIn(BaseModel):
    pass_percentage: int = Field(..., ge=0, le=100)
    max_attempts: int = Field(..., ge=1)
    validity_days: Optional[int] = Field(None, ge=1)
    questions: List[QuestionIn] = Field(..., min_length=1)


class QuestionOut(BaseModel):
    """A question as shown to trainees - never carries the correct answer."""
    id: str
    text: str
    kind: QuestionKind
    options: List[str]


class AssessmentOut(BaseModel):
    training_id: str
    pass_percentage: int
    max_attempts: int
    validity_days: Optional[int]
    is_locked: bool
    questions: List[QuestionOut]


# Training record schemas
class AssignTraining(BaseModel):
    user_id: str = Field(..., min_length=1)
    training_id: str = Field(..., min_length=1)
    due_date: datetime
    assigned_by: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return naive_utc(value)


class TrainingRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    training_id: str
    status: TrainingStatus
    effective_status: TrainingStatus
    assigned_date: datetime
    due_date: datetime
    started_date: Optional[datetime]
    completed_date: Optional[datetime]
    expiry_date: Optional[datetime]
    document_viewed: bool
    document_acknowledged: bool
    assessment_attempts: int
    score: Optional[int]
    passed: bool
    completed_late: bool
    certificate_id: Optional[str]
    certificate_url: Optional[str]


class SubmitAssessment(BaseModel):
    answers: Dict[str, Union[bool, str, None]]


class QuestionResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: str
    question: str
    user_answer: Union[bool, str]
    correct: bool
    correct_answer: Union[bool, str]


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: TrainingStatus
    score: int
    passed: bool
    attempt_number: int
    max_attempts: int
    certificate_id: Optional[str] = None
    certificate_url: Optional[str] = None
    expiry_date: Optional[datetime] = None
    completed_late: bool = False
    results: List[QuestionResultOut] = []


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempt_number: int
    answers: Dict[str, Any]
    score: int
    result: AttemptResult
    correct_count: int
    total_questions: int
    attempted_at: datetime


class AdminOverride(BaseModel):
    actor_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)
    action: OverrideAction
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return naive_utc(value)


# Audit schemas
class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: AuditEventType
    user_id: Optional[str]
    training_id: Optional[str]
    training_record_id: Optional[int]
    previous_status: Optional[str]
    new_status: Optional[str]
    system_timestamp: datetime
    event_source: EventSource
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    ip_address: Optional[str]


class AuditPageResponse(BaseModel):
    items: List[AuditEntryResponse]
    total: int
    page: int
    page_size: int


class SweepSummaryResponse(BaseModel):
    overdue: int
    expired: int
    skipped: int
    errors: int


# Error response
class ErrorResponse(BaseModel):
    """Response when an action is refused."""
    error: str
    message: str
