"""
Tests for the Finance Reminder Scheduler models.

Test strategy:
1. Unit tests for individual models (obligations, offsets, records, audit)
2. Integration tests for the engine with an in-memory hub
3. No real hub or file system beyond pytest's tmp_path
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from finance_scheduler.models.obligation import (
    ObligationKind,
    RecurringObligation,
    ReminderOffset,
    ReminderTiming,
    ReminderUnit,
)
from finance_scheduler.models.notification import (
    NotificationChannel,
    ScheduledNotificationRecord,
    Section,
    SyncResult,
    make_notification_key,
)
from finance_scheduler.models.recurrence import RecurrenceRule, RecurrenceType
from finance_scheduler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestReminderOffsets:
    """Tests for reminder offsets."""

    def test_days_before_uses_default_hour(self):
        """Test that an offset without an hour fires at the default hour."""
        offset = ReminderOffset.days_before(3)
        assert offset.fire_time(date(2024, 3, 10), default_hour=9) == datetime(2024, 3, 7, 9, 0)

    def test_explicit_hour_and_minute(self):
        """Test that an explicit hour overrides the default."""
        offset = ReminderOffset(id="evening", value=1, hour=20, minute=30)
        assert offset.fire_time(date(2024, 3, 10), default_hour=9) == datetime(2024, 3, 9, 20, 30)

    def test_hours_before(self):
        """Test an hours-based offset measured from the reminder time."""
        offset = ReminderOffset(id="early", value=2, unit=ReminderUnit.HOURS)
        assert offset.fire_time(date(2024, 3, 10), default_hour=9) == datetime(2024, 3, 10, 7, 0)

    def test_month_counts_as_thirty_days(self):
        """Test that a one-month offset is thirty days."""
        offset = ReminderOffset(id="month", value=1, unit=ReminderUnit.MONTHS)
        assert offset.fire_time(date(2024, 3, 31), default_hour=9) == datetime(2024, 3, 1, 9, 0)

    def test_after_due(self):
        """Test an offset that fires after the due date."""
        offset = ReminderOffset(id="late", timing=ReminderTiming.AFTER_DUE, value=2)
        assert offset.fire_time(date(2024, 3, 10), default_hour=9) == datetime(2024, 3, 12, 9, 0)

    def test_on_due_ignores_value(self):
        """Test that on-due offsets fire on the due date."""
        offset = ReminderOffset(id="due", timing=ReminderTiming.ON_DUE, value=5)
        assert offset.fire_time(date(2024, 3, 10), default_hour=8) == datetime(2024, 3, 10, 8, 0)

    def test_fingerprint_tracks_resolved_hour(self):
        """Test that changing the default hour changes the fingerprint."""
        offset = ReminderOffset.days_before(1)
        assert offset.fingerprint(9) != offset.fingerprint(10)
        assert ReminderOffset(id="x", value=1, hour=7).fingerprint(9) == \
            ReminderOffset(id="x", value=1, hour=7).fingerprint(10)

    def test_rejects_invalid_hour(self):
        """Test that hours are limited to 0..23."""
        with pytest.raises(ValueError):
            ReminderOffset(hour=24)


class TestRecurringObligation:
    """Tests for the obligation model."""

    def test_due_day_derives_monthly_rule(self):
        """Test that a due_day without a rule yields a monthly rule."""
        bill = RecurringObligation(
            kind=ObligationKind.BILL,
            name="Rent",
            start_date=date(2024, 1, 1),
            due_day=31,
        )
        rule = bill.effective_rule()
        assert rule is not None
        assert rule.type == RecurrenceType.MONTHLY
        assert rule.next_occurrence_after(date(2024, 1, 31)) == date(2024, 2, 29)

    def test_due_day_overrides_monthly_rule(self):
        """Test that due_day replaces a monthly rule's target day."""
        bill = RecurringObligation(
            kind=ObligationKind.BILL,
            name="Internet",
            start_date=date(2024, 1, 1),
            due_day=20,
            recurrence_rule=RecurrenceRule(type=RecurrenceType.MONTHLY, start_date=date(2024, 1, 5)),
        )
        assert bill.effective_rule().next_occurrence_after(date(2024, 1, 5)) == date(2024, 1, 20)

    def test_no_schedule(self):
        """Test that an obligation without rule or due_day has no rule."""
        goal = RecurringObligation(kind=ObligationKind.SAVINGS_GOAL, name="Car", start_date=date(2024, 1, 1))
        assert goal.effective_rule() is None

    def test_default_offsets_by_kind(self):
        """Test the per-kind default reminders."""
        goal = RecurringObligation(kind=ObligationKind.SAVINGS_GOAL, name="Car", start_date=date(2024, 1, 1))
        bill = RecurringObligation(kind=ObligationKind.BILL, name="Rent", start_date=date(2024, 1, 1))

        assert [o.value for o in goal.effective_offsets()] == [14, 7, 3, 1, 0]
        assert [o.timing for o in bill.effective_offsets()] == [ReminderTiming.ON_DUE]

    def test_disabled_offsets_are_skipped(self):
        """Test that disabled offsets are filtered out."""
        bill = RecurringObligation(
            kind=ObligationKind.BILL,
            name="Rent",
            start_date=date(2024, 1, 1),
            reminder_offsets=[
                ReminderOffset(id="a", value=1),
                ReminderOffset(id="b", value=2, enabled=False),
            ],
        )
        assert [o.id for o in bill.effective_offsets()] == ["a"]

    def test_duplicate_offset_ids_rejected(self):
        """Test that reminder ids must be unique within an obligation."""
        with pytest.raises(ValueError):
            RecurringObligation(
                kind=ObligationKind.BILL,
                name="Rent",
                start_date=date(2024, 1, 1),
                reminder_offsets=[ReminderOffset(id="a", value=1), ReminderOffset(id="a", value=2)],
            )

    def test_negative_amount_rejected(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            RecurringObligation(
                kind=ObligationKind.BILL,
                name="Rent",
                amount=Decimal("-1"),
                start_date=date(2024, 1, 1),
            )

    def test_paid_for_occurrence(self):
        """Test payment tracking against one occurrence."""
        bill = RecurringObligation(
            kind=ObligationKind.BILL,
            name="Rent",
            start_date=date(2024, 1, 1),
            last_paid_date=date(2024, 3, 1),
        )
        assert bill.is_paid_for(date(2024, 3, 1))
        assert not bill.is_paid_for(date(2024, 4, 1))


class TestNotificationModels:
    """Tests for notification records and results."""

    def test_key_is_stable(self):
        """Test that equal inputs give equal keys."""
        a = make_notification_key("finance", "bill-1", date(2024, 3, 1), "on_due:on_due:0:days:9:0")
        b = make_notification_key("finance", "bill-1", date(2024, 3, 1), "on_due:on_due:0:days:9:0")
        assert a == b
        assert a.startswith("finance:")

    def test_key_changes_with_each_component(self):
        """Test that entity, date and offset all feed the key."""
        base = make_notification_key("finance", "bill-1", date(2024, 3, 1), "fp")
        assert base != make_notification_key("finance", "bill-2", date(2024, 3, 1), "fp")
        assert base != make_notification_key("finance", "bill-1", date(2024, 3, 2), "fp")
        assert base != make_notification_key("finance", "bill-1", date(2024, 3, 1), "fp2")

    def test_content_signature(self):
        """Test that the signature covers channel, title and body only."""
        record = ScheduledNotificationRecord(
            key="finance:abc",
            module_id="finance",
            source_entity_id=str(uuid4()),
            section=Section.BILLS,
            occurrence_date=date(2024, 3, 1),
            fire_at=datetime(2024, 3, 1, 9),
            channel=NotificationChannel.ALARM,
            title="Rent is due today",
            body="INR 100.00 due on 01 Mar 2024",
        )
        moved = record.model_copy(update={"fire_at": datetime(2024, 3, 1, 10)})
        assert record.content_signature == moved.content_signature
        assert record.content_signature == ("alarm", "Rent is due today", "INR 100.00 due on 01 Mar 2024")

    def test_sync_result_flags(self):
        """Test SyncResult helpers."""
        result = SyncResult(scheduled=2, failed=1, scheduled_by_section={Section.BILLS: 2})
        assert result.has_failures
        assert result.changed
        assert result.to_log_dict()["scheduled_by_section"] == {"bills": 2}
        assert not SyncResult().changed


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent defaults."""
        event = AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            description="Sync started",
        )
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_sync_completed_with_failures_is_warning(self):
        """Test that a sync with failures is logged as a warning."""
        event = AuditEventBuilder.sync_completed(
            "finance", {"scheduled": 3, "cancelled": 0, "failed": 1}, uuid4()
        )
        assert event.severity == AuditSeverity.WARNING
        assert "1 failed" in event.description

    def test_hub_item_failed_event_type(self):
        """Test that the operation picks the event type."""
        schedule = AuditEventBuilder.hub_item_failed("finance", "k", "schedule", "boom", None)
        cancel = AuditEventBuilder.hub_item_failed("finance", "k", "cancel", "boom", None)
        assert schedule.event_type == AuditEventType.NOTIFICATION_SCHEDULE_FAILED
        assert cancel.event_type == AuditEventType.NOTIFICATION_CANCEL_FAILED

    def test_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.module_cleared("finance", 4)
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "module_cleared"
        assert log_dict["details"] == {"cancelled": 4}
