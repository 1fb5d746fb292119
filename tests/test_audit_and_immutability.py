"""
Tests for audit logging and audit immutability.

These tests prove:
- Audit entries are created for every lifecycle transition, in order
- Entries carry previous/new status, source and client IP
- Entries are provably immutable (no update, no delete)
- A failed audit append aborts the transition it documents
"""
from datetime import timedelta

import pytest

from compliance.models.audit import AuditLogEntry
from compliance.models.enums import AuditEventType, EventSource, TrainingStatus
from compliance.services.audit_log import MAX_PAGE_SIZE, AuditLog
from compliance.services.errors import InvariantViolation


class TestAuditLogging:
    """Test that audit entries are created for all mandatory actions."""

    def test_happy_path_trail(self, lifecycle, started_record, answer_sheet, db_session):
        """Assignment to certificate leaves one entry per transition."""
        lifecycle.submit_assessment(started_record.id, answer_sheet(4))

        entries = db_session.query(AuditLogEntry).filter(
            AuditLogEntry.training_record_id == started_record.id
        ).order_by(AuditLogEntry.id).all()

        assert [e.event_type for e in entries] == [
            AuditEventType.ASSIGN_TRAINING,
            AuditEventType.DOCUMENT_VIEWED,
            AuditEventType.DOCUMENT_ACKNOWLEDGED,
            AuditEventType.ASSESSMENT_STARTED,
            AuditEventType.ASSESSMENT_PASSED,
            AuditEventType.CERTIFICATE_ISSUED,
        ]
        assert all(e.user_id == "user_123" for e in entries)
        assert all(e.training_id == "fire-safety-2026" for e in entries)

    def test_pass_entry_carries_score(self, lifecycle, started_record, answer_sheet, db_session, clock):
        lifecycle.submit_assessment(started_record.id, answer_sheet(3))

        entry = db_session.query(AuditLogEntry).filter(
            AuditLogEntry.event_type == AuditEventType.ASSESSMENT_PASSED
        ).one()

        assert entry.previous_status == TrainingStatus.IN_PROGRESS.value
        assert entry.new_status == TrainingStatus.COMPLETED.value
        assert entry.event_source == EventSource.USER
        assert entry.system_timestamp == clock.now()
        assert entry.metadata_json["score"] == 75
        assert entry.metadata_json["attempt_number"] == 1
        assert entry.metadata_json["correct_count"] == 3

    def test_client_ip_recorded(self, lifecycle, assigned_record, db_session):
        lifecycle.view_document(assigned_record.id, ip_address="192.168.1.20")

        entry = db_session.query(AuditLogEntry).filter(
            AuditLogEntry.event_type == AuditEventType.DOCUMENT_VIEWED
        ).one()
        assert entry.ip_address == "192.168.1.20"

    def test_failed_append_aborts_transition(self, lifecycle, in_progress_record, monkeypatch):
        """No state change without its audit entry."""
        def refuse(*args, **kwargs):
            raise RuntimeError("audit store offline")

        monkeypatch.setattr(lifecycle.audit, "append", refuse)

        with pytest.raises(RuntimeError):
            lifecycle.start_assessment(in_progress_record.id)

        record = lifecycle.get_record(in_progress_record.id)
        assert record.started_date is None
        assert lifecycle.catalog.snapshot("fire-safety-2026").is_locked is False


class TestAuditImmutability:
    """INVARIANT: audit entries are append-only."""

    def test_update_refused(self, lifecycle, assigned_record, db_session):
        entry = db_session.query(AuditLogEntry).first()
        entry.new_status = "COMPLETED"

        with pytest.raises(InvariantViolation):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(AuditLogEntry).first().new_status == "PENDING"

    def test_delete_refused(self, lifecycle, assigned_record, db_session):
        entry = db_session.query(AuditLogEntry).first()
        db_session.delete(entry)

        with pytest.raises(InvariantViolation):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(AuditLogEntry).count() == 1

    def test_service_exposes_no_edit_path(self):
        """AuditLog only appends and queries."""
        assert not hasattr(AuditLog, "update")
        assert not hasattr(AuditLog, "delete")


class TestAuditQuery:
    """Filtered, newest-first, paginated reads."""

    @pytest.fixture
    def trail(self, lifecycle, clock):
        """Three users assigned an hour apart; the first one also views."""
        records = []
        for user in ("user_a", "user_b", "user_c"):
            records.append(lifecycle.assign_training(
                user, "fire-safety-2026", due_date=clock.now() + timedelta(days=7)
            ))
            clock.advance(timedelta(hours=1))
        lifecycle.view_document(records[0].id)
        return records

    def test_filter_by_user(self, db_session, trail):
        page = AuditLog(db_session).query(user_id="user_a")

        assert page.total == 2
        assert [e.event_type for e in page.items] == [
            AuditEventType.DOCUMENT_VIEWED,
            AuditEventType.ASSIGN_TRAINING,
        ]

    def test_filter_by_event_type(self, db_session, trail):
        page = AuditLog(db_session).query(event_type=AuditEventType.ASSIGN_TRAINING)

        assert page.total == 3
        assert [e.user_id for e in page.items] == ["user_c", "user_b", "user_a"]

    def test_filter_by_time_range(self, db_session, trail, clock):
        start = clock.now() - timedelta(hours=2)
        end = clock.now() - timedelta(hours=1)

        page = AuditLog(db_session).query(start=start, end=end)

        assert {e.user_id for e in page.items} == {"user_b", "user_c"}

    def test_pagination(self, db_session, trail):
        audit = AuditLog(db_session)

        first = audit.query(page=1, page_size=3)
        second = audit.query(page=2, page_size=3)

        assert first.total == 4
        assert len(first.items) == 3
        assert len(second.items) == 1
        assert not {e.id for e in first.items} & {e.id for e in second.items}

    def test_page_size_is_capped(self, db_session, trail):
        page = AuditLog(db_session).query(page_size=10_000)

        assert page.page_size == MAX_PAGE_SIZE
