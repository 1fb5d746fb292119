"""Pytest configuration and shared fixtures."""
import os

# Keep the app module off the on-disk database and without a sweeper thread
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEP_ENABLED", "false")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from compliance.api.routes import get_clock, get_issuer, get_session_factory
from compliance.clock import FixedClock
from compliance.config import Settings
from compliance.database import Base, build_engine, get_db
from compliance.main import app
# Import models to register them with SQLAlchemy Base
from compliance.models.assessment import AssessmentConfig, AssessmentQuestionRow
from compliance.models.attempt import AssessmentAttempt
from compliance.models.audit import AuditLogEntry
from compliance.models.domain import TrainingCertificate, TrainingRecord
from compliance.models.enums import QuestionKind
from compliance.services.assessment_catalog import AssessmentCatalog
from compliance.services.certificates import CertificateIssuer, LinkArtifactStore
from compliance.services.lifecycle import LifecycleEngine
from compliance.services.scoring import QuestionSnapshot

NOW = datetime(2026, 3, 2, 9, 0, 0)
TRAINING_ID = "fire-safety-2026"

QUESTIONS = (
    QuestionSnapshot(
        id="q1",
        text="Which extinguisher is safe on electrical fires?",
        kind=QuestionKind.MULTIPLE_CHOICE,
        correct_answer="CO2",
        options=("Water", "CO2", "Foam"),
    ),
    QuestionSnapshot(
        id="q2",
        text="Fire doors may be wedged open during busy periods.",
        kind=QuestionKind.TRUE_FALSE,
        correct_answer=False,
    ),
    QuestionSnapshot(
        id="q3",
        text="Name the site assembly point.",
        kind=QuestionKind.SHORT_ANSWER,
        correct_answer="car park",
    ),
    QuestionSnapshot(
        id="q4",
        text="Who do you report to at the assembly point?",
        kind=QuestionKind.MULTIPLE_CHOICE,
        correct_answer="Fire warden",
        options=("Line manager", "Fire warden", "Reception"),
    ),
)

CORRECT_ANSWERS = {"q1": "CO2", "q2": False, "q3": "car park", "q4": "Fire warden"}
WRONG_ANSWERS = {"q1": "Water", "q2": True, "q3": "reception", "q4": "Reception"}


@pytest.fixture
def db_engine():
    """One in-memory database per test, shared by every session of that test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a fresh in-memory database for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed database, so that separate connections really compete."""
    engine = build_engine(f"sqlite:///{tmp_path / 'compliance.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def test_settings():
    return Settings(database_url="sqlite://", sweep_enabled=False)


@pytest.fixture
def issuer():
    return CertificateIssuer(LinkArtifactStore("/certificates"))


@pytest.fixture
def questions():
    return QUESTIONS


@pytest.fixture
def answer_sheet():
    """Build a submission with the first `correct` answers right and the rest wrong."""
    def build(correct: int) -> dict:
        return {
            q.id: (CORRECT_ANSWERS if position < correct else WRONG_ANSWERS)[q.id]
            for position, q in enumerate(QUESTIONS)
        }
    return build


@pytest.fixture
def catalog(db_session):
    """Catalog with a four-question assessment: pass at 70%, three attempts."""
    catalog = AssessmentCatalog(db_session)
    catalog.configure(TRAINING_ID, pass_percentage=70, max_attempts=3, questions=QUESTIONS)
    return catalog


@pytest.fixture
def lifecycle(db_session, issuer, clock, test_settings, catalog):
    return LifecycleEngine(db_session, issuer, clock=clock, settings=test_settings, catalog=catalog)


@pytest.fixture
def assigned_record(lifecycle, clock):
    """A PENDING record due in a week."""
    return lifecycle.assign_training(
        "user_123",
        TRAINING_ID,
        due_date=clock.now() + timedelta(days=7),
        assigned_by="admin_1",
    )


@pytest.fixture
def in_progress_record(lifecycle, assigned_record):
    """Document viewed and acknowledged."""
    lifecycle.view_document(assigned_record.id)
    return lifecycle.acknowledge(assigned_record.id)


@pytest.fixture
def started_record(lifecycle, in_progress_record):
    """Assessment started, no submission yet."""
    return lifecycle.start_assessment(in_progress_record.id)


@pytest.fixture
def client(session_factory, clock, issuer):
    """TestClient bound to the per-test database and fixed clock."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_issuer] = lambda: issuer
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
