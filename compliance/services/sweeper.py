"""
Overdue/expiry sweeper.

Finds records whose due date or certificate expiry has passed and asks the
lifecycle engine to audit the lapse. The watermark column makes a pass
idempotent: a record already audited as OVERDUE/EXPIRED is not selected
again. Failures are logged and picked up by the next tick.
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compliance.clock import Clock, SystemClock
from compliance.config import Settings, settings as default_settings
from compliance.services.certificates import CertificateIssuer
from compliance.services.errors import ConcurrentModification
from compliance.services.lifecycle import LifecycleEngine
from compliance.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    overdue: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class OverdueSweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        issuer: CertificateIssuer,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.issuer = issuer
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _sweep(self, engine: LifecycleEngine, candidates, mark, summary: SweepSummary, counter: str) -> None:
        for record_id in candidates:
            try:
                if mark(record_id):
                    setattr(summary, counter, getattr(summary, counter) + 1)
                else:
                    summary.skipped += 1
            except ConcurrentModification:
                # A user action won the race; the next pass re-evaluates the record.
                summary.skipped += 1
            except Exception:
                summary.errors += 1
                logger.exception("Sweep failed for training record", extra={"record_id": record_id})

    def run_once(self) -> SweepSummary:
        """One pass over overdue and expired records. Never raises."""
        summary = SweepSummary()
        db = self.session_factory()
        try:
            engine = LifecycleEngine(db, self.issuer, clock=self.clock, settings=self.settings)
            store = RecordStore(db)
            now = self.clock.now()
            try:
                overdue_ids = [r.id for r in store.overdue_candidates(now)]
                expired_ids = [r.id for r in store.expiry_candidates(now)]
                db.rollback()
            except SQLAlchemyError:
                summary.errors += 1
                logger.exception("Sweep could not read training records")
                return summary

            self._sweep(engine, overdue_ids, engine.mark_overdue, summary, "overdue")
            self._sweep(engine, expired_ids, engine.mark_expired, summary, "expired")
        finally:
            db.close()

        if summary.overdue or summary.expired or summary.errors:
            logger.info("Sweep completed", extra=summary.as_dict())
        return summary

    def _loop(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep pass crashed")
            self._stop.wait(interval)

    def start(self) -> None:
        """Run a pass now and then every sweep_interval_seconds on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="overdue-sweeper", daemon=True)
        self._thread.start()
        logger.info(
            "Overdue sweeper started",
            extra={"interval_seconds": self.settings.sweep_interval_seconds},
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
