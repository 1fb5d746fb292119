"""
Audit log model - the compliance trail of every lifecycle transition.

Rows are appended by the lifecycle engine in the same transaction as the
state change they document. They are retained indefinitely and never
edited or deleted.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, Index, Integer, JSON, String, event

from compliance.clock import utcnow
from compliance.database import Base
from compliance.models.enums import AuditEventType, EventSource
from compliance.services.errors import InvariantViolation


class AuditLogEntry(Base):
    """
    Immutable audit entry.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        Index("ix_audit_user_training_time", "user_id", "training_id", "system_timestamp"),
        Index("ix_audit_event_time", "event_type", "system_timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(SQLEnum(AuditEventType), nullable=False)
    user_id = Column(String, nullable=True)  # Nullable for system events
    training_id = Column(String, nullable=True)
    training_record_id = Column(Integer, nullable=True, index=True)
    previous_status = Column(String, nullable=True)
    new_status = Column(String, nullable=True)
    system_timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    event_source = Column(SQLEnum(EventSource), nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    ip_address = Column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLogEntry id={self.id} event={self.event_type} record={self.training_record_id}>"


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise InvariantViolation(f"Audit log entries are immutable (entry {target.id})")


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise InvariantViolation(f"Audit log entries cannot be deleted (entry {target.id})")
