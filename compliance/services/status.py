"""Read-side projection of OVERDUE and EXPIRED."""
from datetime import datetime
from typing import Optional

from compliance.models.enums import ACTIVE_STATUSES, TrainingStatus


def derive_status(
    status: TrainingStatus,
    due_date: Optional[datetime],
    expiry_date: Optional[datetime],
    now: datetime,
) -> TrainingStatus:
    """
    Effective status of a record at `now`.

    Only PENDING/IN_PROGRESS can read as OVERDUE and only COMPLETED can read
    as EXPIRED; every other stored disposition is reported as-is.
    """
    if status in ACTIVE_STATUSES and due_date is not None and due_date < now:
        return TrainingStatus.OVERDUE
    if status == TrainingStatus.COMPLETED and expiry_date is not None and expiry_date < now:
        return TrainingStatus.EXPIRED
    return status


def effective_status(record, now: datetime) -> TrainingStatus:
    return derive_status(record.status, record.due_date, record.expiry_date, now)
