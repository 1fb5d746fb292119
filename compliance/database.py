"""Database configuration and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from compliance.config import settings

SQLALCHEMY_DATABASE_URL = settings.database_url


def build_engine(url: str):
    """Create an engine configured for the given database type."""
    if url.startswith("sqlite"):
        # SQLite-specific config; writers wait on each other instead of failing fast
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    # PostgreSQL config (production)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
    )


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
