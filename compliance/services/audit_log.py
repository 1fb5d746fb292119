"""Append and query the compliance audit log."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from compliance.clock import utcnow
from compliance.models.audit import AuditLogEntry
from compliance.models.enums import AuditEventType, EventSource

MAX_PAGE_SIZE = 500


@dataclass
class AuditPage:
    items: List[AuditLogEntry]
    total: int
    page: int
    page_size: int


class AuditLog:
    """Append-only sink. The model refuses updates and deletes at flush time."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        event_type: AuditEventType,
        event_source: EventSource,
        *,
        user_id: Optional[str] = None,
        training_id: Optional[str] = None,
        training_record_id: Optional[int] = None,
        previous_status: Optional[Any] = None,
        new_status: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Add an entry to the caller's transaction and return its id."""
        entry = AuditLogEntry(
            event_type=event_type,
            event_source=event_source,
            user_id=user_id,
            training_id=training_id,
            training_record_id=training_record_id,
            previous_status=getattr(previous_status, "value", previous_status),
            new_status=getattr(new_status, "value", new_status),
            system_timestamp=timestamp or utcnow(),
            metadata_json=metadata or {},
            ip_address=ip_address,
        )
        self.db.add(entry)
        self.db.flush()
        return entry.id

    def query(
        self,
        user_id: Optional[str] = None,
        training_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        training_record_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> AuditPage:
        """Filtered, newest-first page of entries. start/end are inclusive."""
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        conditions = []
        if user_id:
            conditions.append(AuditLogEntry.user_id == user_id)
        if training_id:
            conditions.append(AuditLogEntry.training_id == training_id)
        if training_record_id is not None:
            conditions.append(AuditLogEntry.training_record_id == training_record_id)
        if event_type:
            conditions.append(AuditLogEntry.event_type == event_type)
        if start:
            conditions.append(AuditLogEntry.system_timestamp >= start)
        if end:
            conditions.append(AuditLogEntry.system_timestamp <= end)

        query = select(AuditLogEntry)
        for condition in conditions:
            query = query.where(condition)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        items = list(self.db.execute(
            query
            .order_by(AuditLogEntry.system_timestamp.desc(), AuditLogEntry.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars())
        return AuditPage(items=items, total=total, page=page, page_size=page_size)
