"""
Certificate issuance.

Issuance is keyed by training record: asking twice for the same record
returns the certificate already issued. The issuer joins the caller's
transaction and never commits, so a failed transition leaves no
certificate behind.
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance.models.domain import TrainingCertificate, TrainingRecord
from compliance.services.errors import CertificateStoreUnavailable, RecordNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateGrant:
    certificate_id: str
    certificate_url: str
    expiry_date: Optional[datetime]


class CertificateArtifactStore(ABC):
    """Where certificate artifacts (PDFs) live. Returns the artifact URL."""

    @abstractmethod
    def render(
        self,
        certificate_id: str,
        record: TrainingRecord,
        score: int,
        completed_date: datetime,
        expiry_date: Optional[datetime],
    ) -> str:
        ...


class LinkArtifactStore(CertificateArtifactStore):
    """Addresses artifacts rendered on demand under a base URL."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def render(self, certificate_id, record, score, completed_date, expiry_date) -> str:
        return f"{self.base_url}/{certificate_id}.pdf"


def make_certificate_id(record_id: int, completed_date: datetime) -> str:
    """
    Deterministic certificate identifier.

    Format: CERT-<YYYYMMDD>-<first 12 hex of sha256(record_id|completed_date)>
    """
    digest = hashlib.sha256(f"{record_id}|{completed_date.isoformat()}".encode("utf-8")).hexdigest()
    return f"CERT-{completed_date:%Y%m%d}-{digest[:12].upper()}"


class CertificateIssuer:
    def __init__(self, artifact_store: CertificateArtifactStore):
        self.artifact_store = artifact_store

    def existing(self, db: Session, record_id: int) -> Optional[TrainingCertificate]:
        return db.execute(
            select(TrainingCertificate).where(TrainingCertificate.training_record_id == record_id)
        ).scalar_one_or_none()

    def issue(
        self,
        db: Session,
        record_id: int,
        score: int,
        completed_date: datetime,
        validity: Optional[timedelta],
    ) -> CertificateGrant:
        """
        Issue the certificate for a record, or return the one already issued.

        Raises CertificateStoreUnavailable if the artifact cannot be produced.
        """
        certificate = self.existing(db, record_id)
        if certificate is not None:
            logger.info(
                "Certificate already issued, reusing",
                extra={"record_id": record_id, "certificate_id": certificate.certificate_id},
            )
            return CertificateGrant(
                certificate_id=certificate.certificate_id,
                certificate_url=certificate.certificate_url,
                expiry_date=certificate.expiry_date,
            )

        record = db.get(TrainingRecord, record_id)
        if record is None:
            raise RecordNotFound(f"Training record {record_id} not found", record_id=record_id)

        certificate_id = make_certificate_id(record_id, completed_date)
        expiry_date = completed_date + validity if validity else None
        try:
            certificate_url = self.artifact_store.render(
                certificate_id, record, score, completed_date, expiry_date
            )
        except CertificateStoreUnavailable:
            raise
        except OSError as exc:
            raise CertificateStoreUnavailable(
                f"Certificate artifact store unavailable: {exc}", record_id=record_id
            ) from exc

        db.add(TrainingCertificate(
            certificate_id=certificate_id,
            training_record_id=record_id,
            user_id=record.user_id,
            training_id=record.training_id,
            score=score,
            certificate_url=certificate_url,
            issue_date=completed_date,
            expiry_date=expiry_date,
        ))
        db.flush()
        logger.info(
            "Certificate issued",
            extra={"record_id": record_id, "certificate_id": certificate_id},
        )
        return CertificateGrant(
            certificate_id=certificate_id,
            certificate_url=certificate_url,
            expiry_date=expiry_date,
        )
