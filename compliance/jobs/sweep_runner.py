"""Overdue/expiry sweep runner.

Safe to run from cron: a pass only audits lapses that have not been
audited yet.
"""
from compliance.config import settings
from compliance.database import Base, SessionLocal, engine
from compliance.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from compliance.models import assessment, attempt, audit, domain  # noqa: F401
from compliance.services.certificates import CertificateIssuer, LinkArtifactStore
from compliance.services.sweeper import OverdueSweeper


def run() -> dict:
    Base.metadata.create_all(bind=engine)
    issuer = CertificateIssuer(LinkArtifactStore(settings.certificate_base_url))
    sweeper = OverdueSweeper(SessionLocal, issuer, settings=settings)
    return sweeper.run_once().as_dict()


if __name__ == "__main__":
    configure_logging(settings.log_level)
    result = run()
    print("Overdue sweep completed:", result)
