"""Runtime settings, read from the environment."""
import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./compliance.db")
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./compliance.db"
    cas_retry_limit: int = 1
    certificate_validity_days: int = 365
    certificate_base_url: str = "/certificates"
    sweep_enabled: bool = True
    sweep_interval_seconds: int = 3600
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_database_url(),
            cas_retry_limit=int(os.getenv("CAS_RETRY_LIMIT", "1")),
            certificate_validity_days=int(os.getenv("CERTIFICATE_VALIDITY_DAYS", "365")),
            certificate_base_url=os.getenv("CERTIFICATE_BASE_URL", "/certificates"),
            sweep_enabled=_env_bool("SWEEP_ENABLED", True),
            sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


settings = Settings.from_env()
