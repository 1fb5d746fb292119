"""API routes for the training compliance lifecycle."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from compliance.api.schemas import (
    AdminOverride,
    AssessmentConfigIn,
    AssessmentOut,
    AssignTraining,
    AttemptResponse,
    AuditEntryResponse,
    AuditPageResponse,
    ErrorResponse,
    QuestionOut,
    SubmissionResponse,
    SubmitAssessment,
    SweepSummaryResponse,
    TrainingRecordResponse,
    naive_utc,
)
from compliance.clock import Clock, SystemClock
from compliance.config import settings
from compliance.database import SessionLocal, get_db
from compliance.models.enums import AuditEventType
from compliance.services.assessment_catalog import AssessmentCatalog, AssessmentSnapshot
from compliance.services.audit_log import AuditLog
from compliance.services.certificates import CertificateIssuer, LinkArtifactStore
from compliance.services.errors import (
    AssessmentLocked,
    AssessmentNotConfigured,
    AttemptsExhausted,
    CertificateStoreUnavailable,
    ConcurrentModification,
    DuplicateAssignment,
    IncompleteSubmission,
    InvalidAnswer,
    InvalidStateTransition,
    LifecycleError,
    RecordNotFound,
)
from compliance.services.lifecycle import LifecycleEngine
from compliance.services.scoring import QuestionSnapshot
from compliance.services.sweeper import OverdueSweeper

router = APIRouter()

_clock = SystemClock()
_issuer = CertificateIssuer(LinkArtifactStore(settings.certificate_base_url))

# Most specific first
_ERROR_STATUS = (
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (AssessmentNotConfigured, status.HTTP_404_NOT_FOUND),
    (IncompleteSubmission, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidAnswer, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AttemptsExhausted, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (DuplicateAssignment, status.HTTP_409_CONFLICT),
    (AssessmentLocked, status.HTTP_409_CONFLICT),
    (CertificateStoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)

_REFUSALS = {
    403: {"model": ErrorResponse, "description": "Attempts exhausted"},
    404: {"model": ErrorResponse, "description": "Record or assessment not found"},
    409: {"model": ErrorResponse, "description": "Invalid transition or concurrent modification - retry"},
}


def refusal(error: LifecycleError) -> HTTPException:
    """Translate a lifecycle refusal into an HTTP error carrying its details."""
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            code = error_code
            break
    return HTTPException(status_code=code, detail=error.to_dict())


# Dependencies
def get_clock() -> Clock:
    return _clock


def get_issuer() -> CertificateIssuer:
    return _issuer


def get_session_factory():
    return SessionLocal


def get_engine(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    issuer: CertificateIssuer = Depends(get_issuer),
) -> LifecycleEngine:
    return LifecycleEngine(db, issuer, clock=clock, settings=settings)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def record_response(engine: LifecycleEngine, record) -> TrainingRecordResponse:
    data = {column.name: getattr(record, column.name) for column in record.__table__.columns}
    data["effective_status"] = engine.effective_status(record)
    return TrainingRecordResponse.model_validate(data)


def assessment_response(snapshot: AssessmentSnapshot) -> AssessmentOut:
    return AssessmentOut(
        training_id=snapshot.training_id,
        pass_percentage=snapshot.pass_percentage,
        max_attempts=snapshot.max_attempts,
        validity_days=snapshot.validity_days,
        is_locked=snapshot.is_locked,
        questions=[
            QuestionOut(id=q.id, text=q.text, kind=q.kind, options=list(q.options))
            for q in snapshot.questions
        ],
    )


# Assessment configuration endpoints
@router.put("/assessments/{training_id}", response_model=AssessmentOut)
def configure_assessment(training_id: str, config: AssessmentConfigIn, db: Session = Depends(get_db)):
    """Create or replace a training's assessment. Refused once attempts have started."""
    catalog = AssessmentCatalog(db)
    try:
        snapshot = catalog.configure(
            training_id,
            pass_percentage=config.pass_percentage,
            max_attempts=config.max_attempts,
            validity_days=config.validity_days,
            questions=[
                QuestionSnapshot(
                    id=q.id,
                    text=q.text,
                    kind=q.kind,
                    correct_answer=q.correct_answer,
                    options=tuple(q.options),
                )
                for q in config.questions
            ],
        )
    except LifecycleError as e:
        raise refusal(e)
    return assessment_response(snapshot)


@router.get("/assessments/{training_id}", response_model=AssessmentOut)
def get_assessment(training_id: str, db: Session = Depends(get_db)):
    try:
        snapshot = AssessmentCatalog(db).snapshot(training_id)
    except LifecycleError as e:
        raise refusal(e)
    return assessment_response(snapshot)


# Training record endpoints
@router.post(
    "/training-records",
    response_model=TrainingRecordResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_REFUSALS,
)
def assign_training(data: AssignTraining, request: Request, engine: LifecycleEngine = Depends(get_engine)):
    """Assign a training to a user. The record starts PENDING."""
    try:
        record = engine.assign_training(
            data.user_id,
            data.training_id,
            due_date=data.due_date,
            assigned_by=data.assigned_by,
            ip_address=client_ip(request),
        )
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


@router.get("/training-records", response_model=List[TrainingRecordResponse])
def list_training_records(
    user_id: Optional[str] = None,
    training_id: Optional[str] = None,
    engine: LifecycleEngine = Depends(get_engine),
):
    """List training records, with OVERDUE/EXPIRED derived at read time."""
    return [
        record_response(engine, record)
        for record in engine.store.list_records(user_id=user_id, training_id=training_id)
    ]


@router.get("/training-records/{record_id}", response_model=TrainingRecordResponse, responses=_REFUSALS)
def get_training_record(record_id: int, engine: LifecycleEngine = Depends(get_engine)):
    try:
        record = engine.get_record(record_id)
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


@router.post("/training-records/{record_id}/view", response_model=TrainingRecordResponse, responses=_REFUSALS)
def view_document(record_id: int, request: Request, engine: LifecycleEngine = Depends(get_engine)):
    try:
        record = engine.view_document(record_id, ip_address=client_ip(request))
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


@router.post("/training-records/{record_id}/acknowledge", response_model=TrainingRecordResponse, responses=_REFUSALS)
def acknowledge_document(record_id: int, request: Request, engine: LifecycleEngine = Depends(get_engine)):
    """
    Acknowledge the training document.
    Side effect: moves the record to IN_PROGRESS.
    """
    try:
        record = engine.acknowledge(record_id, ip_address=client_ip(request))
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


@router.post("/training-records/{record_id}/start", response_model=TrainingRecordResponse, responses=_REFUSALS)
def start_assessment(record_id: int, request: Request, engine: LifecycleEngine = Depends(get_engine)):
    """
    Start an assessment attempt.
    Side effect: locks the training's assessment configuration.
    """
    try:
        record = engine.start_assessment(record_id, ip_address=client_ip(request))
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


@router.post(
    "/training-records/{record_id}/submit",
    response_model=SubmissionResponse,
    responses={
        **_REFUSALS,
        422: {"model": ErrorResponse, "description": "Incomplete or malformed submission"},
        503: {"model": ErrorResponse, "description": "Certificate store unavailable - retry later"},
    },
)
def submit_assessment(
    record_id: int,
    submission: SubmitAssessment,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
):
    """
    Submit assessment answers.

    WILL REFUSE if:
    - The record is LOCKED or out of attempts
    - The record is not IN_PROGRESS, or the assessment was not started
    - Any question is unanswered
    """
    try:
        result = engine.submit_assessment(record_id, submission.answers, ip_address=client_ip(request))
    except LifecycleError as e:
        raise refusal(e)
    return SubmissionResponse.model_validate(result)


@router.get(
    "/training-records/{record_id}/attempts",
    response_model=List[AttemptResponse],
    responses=_REFUSALS,
)
def list_attempts(record_id: int, engine: LifecycleEngine = Depends(get_engine)):
    """Every accepted submission with its answers, oldest first. Read-only."""
    try:
        attempts = engine.list_attempts(record_id)
    except LifecycleError as e:
        raise refusal(e)
    return [AttemptResponse.model_validate(attempt) for attempt in attempts]


@router.post("/training-records/{record_id}/override", response_model=TrainingRecordResponse, responses=_REFUSALS)
def admin_override(
    record_id: int,
    override: AdminOverride,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
):
    """Audited administrative correction (due date extension, certificate backfill)."""
    try:
        record = engine.admin_override(
            record_id,
            actor_id=override.actor_id,
            reason=override.reason,
            action=override.action,
            due_date=override.due_date,
            ip_address=client_ip(request),
        )
    except LifecycleError as e:
        raise refusal(e)
    return record_response(engine, record)


# Audit endpoints
@router.get("/audit-log", response_model=AuditPageResponse)
def query_audit_log(
    user_id: Optional[str] = None,
    training_id: Optional[str] = None,
    training_record_id: Optional[int] = None,
    event_type: Optional[AuditEventType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 50,
    db: Session = Depends(get_db),
):
    """Newest-first, paginated audit entries. Read-only."""
    result = AuditLog(db).query(
        user_id=user_id,
        training_id=training_id,
        training_record_id=training_record_id,
        event_type=event_type,
        start=naive_utc(start),
        end=naive_utc(end),
        page=page,
        page_size=page_size,
    )
    return AuditPageResponse(
        items=[AuditEntryResponse.model_validate(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


# Sweeper endpoint
@router.post("/sweeps", response_model=SweepSummaryResponse)
def run_sweep(
    clock: Clock = Depends(get_clock),
    issuer: CertificateIssuer = Depends(get_issuer),
    session_factory=Depends(get_session_factory),
):
    """Run one overdue/expiry pass now instead of waiting for the next tick."""
    summary = OverdueSweeper(session_factory, issuer, clock=clock, settings=settings).run_once()
    return SweepSummaryResponse(**summary.as_dict())
