"""Main FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compliance.api.routes import get_clock, get_issuer, router
from compliance.config import settings
from compliance.database import Base, SessionLocal, engine
from compliance.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from compliance.models.assessment import AssessmentConfig, AssessmentQuestionRow
from compliance.models.attempt import AssessmentAttempt
from compliance.models.audit import AuditLogEntry
from compliance.models.domain import TrainingCertificate, TrainingRecord
from compliance.services.sweeper import OverdueSweeper

configure_logging(settings.log_level)

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.sweep_enabled:
        sweeper = OverdueSweeper(SessionLocal, get_issuer(), clock=get_clock(), settings=settings)
        sweeper.start()
    yield
    if sweeper is not None:
        sweeper.stop()


# Create FastAPI app
app = FastAPI(
    title="Training Compliance Engine",
    description="Tracks mandatory training from assignment to certificate, with an append-only audit trail.",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Training compliance"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Training Compliance Engine"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
