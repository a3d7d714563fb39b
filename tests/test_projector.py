"""
Tests for occurrence projection.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

from finance_scheduler.models.obligation import (
    ObligationKind,
    RecurringObligation,
    ReminderOffset,
    ReminderTiming,
)
from finance_scheduler.models.recurrence import (
    AfterDate,
    AfterTotalAmount,
    RecurrenceRule,
    RecurrenceType,
    Weekday,
)
from finance_scheduler.scheduling.projector import (
    POLICY_BY_KIND,
    OccurrenceProjector,
    ProjectionPolicy,
)


NOW = datetime(2024, 3, 10, 8, 0)


def _bill(**overrides) -> RecurringObligation:
    fields = dict(
        kind=ObligationKind.BILL,
        name="Rent",
        amount=Decimal("15000"),
        start_date=date(2024, 1, 1),
        due_day=5,
    )
    fields.update(overrides)
    return RecurringObligation(**fields)


def _dates(projected):
    return [p.occurrence_date for p in projected]


class TestPolicyTable:
    """Tests for the kind-to-policy table."""

    def test_every_kind_has_a_policy(self):
        """Test that no obligation kind is left without a policy."""
        assert set(POLICY_BY_KIND) == set(ObligationKind)

    def test_income_uses_window(self):
        assert POLICY_BY_KIND[ObligationKind.RECURRING_INCOME] == ProjectionPolicy.WINDOW
        assert POLICY_BY_KIND[ObligationKind.BILL] == ProjectionPolicy.ROLLING


class TestRollingProjection:
    """Tests for single-occurrence projection."""

    def test_future_cached_date_is_kept(self):
        """Test that a cached due date in the future is used as-is."""
        bill = _bill(next_due_date=date(2024, 3, 20))
        assert _dates(OccurrenceProjector(200).project(bill, NOW, 30)) == [date(2024, 3, 20)]

    def test_cached_date_today_is_kept(self):
        """Test that a due date of today is still projected."""
        bill = _bill(next_due_date=date(2024, 3, 10))
        assert _dates(OccurrenceProjector(200).project(bill, NOW, 30)) == [date(2024, 3, 10)]

    def test_passed_cached_date_advances(self):
        """Test that a stale cached date rolls forward to the next occurrence."""
        bill = _bill(next_due_date=date(2024, 3, 5))
        assert _dates(OccurrenceProjector(200).project(bill, NOW, 60)) == [date(2024, 4, 5)]

    def test_occurrence_today_from_rule(self):
        """Test that an occurrence falling today is projected."""
        bill = _bill(due_day=10)
        assert _dates(OccurrenceProjector(200).project(bill, NOW, 30)) == [date(2024, 3, 10)]

    def test_no_rule_and_passed_date(self):
        """Test that nothing is projected without a rule once the date has passed."""
        bill = _bill(due_day=None, next_due_date=date(2024, 3, 1))
        assert OccurrenceProjector(200).project(bill, NOW, 30) == []

    def test_beyond_window(self):
        """Test that occurrences past the planning window are dropped."""
        bill = _bill(due_day=30)
        assert OccurrenceProjector(200).project(bill, NOW, 7) == []

    def test_cached_date_past_end_condition(self):
        """Test that a cached date after the rule's end is dropped."""
        rule = RecurrenceRule(
            type=RecurrenceType.MONTHLY,
            start_date=date(2024, 1, 5),
            end_condition=AfterDate(end_date=date(2024, 3, 5)),
        )
        bill = _bill(due_day=None, recurrence_rule=rule, next_due_date=date(2024, 3, 20))
        assert OccurrenceProjector(200).project(bill, NOW, 30) == []

    def test_amount_cap_reached(self):
        """Test that a debt paid off by total amount projects nothing."""
        rule = RecurrenceRule(
            type=RecurrenceType.MONTHLY,
            start_date=date(2024, 1, 15),
            end_condition=AfterTotalAmount(amount=Decimal("3000")),
        )
        debt = _bill(
            kind=ObligationKind.DEBT,
            due_day=None,
            recurrence_rule=rule,
            total_paid_amount=Decimal("3000"),
        )
        assert OccurrenceProjector(200).project(debt, NOW, 30) == []

    def test_inactive_obligation(self):
        """Test that inactive obligations project nothing."""
        bill = _bill(is_active=False)
        assert OccurrenceProjector(200).project(bill, NOW, 30) == []

    def test_offsets_are_attached(self):
        """Test that each projected occurrence carries the enabled offsets."""
        bill = _bill(
            due_day=20,
            reminder_offsets=[ReminderOffset(id="a", value=3), ReminderOffset(id="b", value=1)],
        )
        projected = OccurrenceProjector(200).project(bill, NOW, 30)
        assert [o.id for o in projected[0].reminder_offsets] == ["a", "b"]


class TestWindowProjection:
    """Tests for multi-occurrence projection."""

    def test_weekly_salary_in_window(self):
        """Test that every Friday in the window is projected."""
        income = RecurringObligation(
            kind=ObligationKind.RECURRING_INCOME,
            name="Salary",
            start_date=date(2024, 1, 5),
            recurrence_rule=RecurrenceRule(
                type=RecurrenceType.WEEKLY,
                start_date=date(2024, 1, 5),
                days_of_week=[Weekday.FRIDAY],
            ),
        )
        assert _dates(OccurrenceProjector(200).project(income, NOW, 30)) == [
            date(2024, 3, 15),
            date(2024, 3, 22),
            date(2024, 3, 29),
            date(2024, 4, 5),
        ]

    def test_capped_occurrence_count(self):
        """Test that a daily income is capped by the occurrence limit."""
        income = RecurringObligation(
            kind=ObligationKind.RECURRING_INCOME,
            name="Tips",
            start_date=date(2024, 1, 1),
            recurrence_rule=RecurrenceRule(type=RecurrenceType.DAILY, start_date=date(2024, 1, 1)),
        )
        assert len(OccurrenceProjector(200).project(income, NOW, 365)) == 200
        assert len(OccurrenceProjector(200).project(income, NOW, 10)) == 10

    def test_never_before_today(self):
        """Test that window projection starts at today."""
        income = RecurringObligation(
            kind=ObligationKind.RECURRING_INCOME,
            name="Rent income",
            start_date=date(2024, 1, 1),
            due_day=1,
        )
        dates = _dates(OccurrenceProjector(200).project(income, NOW, 60))
        assert dates == [date(2024, 4, 1), date(2024, 5, 1)]


class TestTrailingProjection:
    """Tests for occurrences that have just passed."""

    GRACE = timedelta(hours=24)

    def test_after_due_reminder_reaches_back(self):
        """Test that a passed occurrence within the after-due span is projected."""
        bill = _bill(reminder_offsets=[
            ReminderOffset(id="late", timing=ReminderTiming.AFTER_DUE, value=5),
        ])
        projected = OccurrenceProjector(200).project_trailing(bill, NOW, self.GRACE)
        assert _dates(projected) == [date(2024, 3, 5)]
        assert [o.id for o in projected[0].reminder_offsets] == ["late"]

    def test_default_offsets_look_back_one_grace_period(self):
        """Test that an on-due reminder only reaches back past the grace period."""
        assert OccurrenceProjector(200).project_trailing(_bill(), NOW, self.GRACE) == []
        yesterday = _bill(due_day=9)
        assert _dates(OccurrenceProjector(200).project_trailing(yesterday, NOW, self.GRACE)) == [
            date(2024, 3, 9)
        ]

    def test_passed_cached_date_without_rule(self):
        """Test that a cached date from yesterday is kept when there is no rule."""
        bill = _bill(due_day=None, next_due_date=date(2024, 3, 9))
        assert _dates(OccurrenceProjector(200).project_trailing(bill, NOW, self.GRACE)) == [
            date(2024, 3, 9)
        ]

    def test_today_is_not_trailing(self):
        """Test that today's occurrence is left to the forward projection."""
        bill = _bill(due_day=10)
        assert OccurrenceProjector(200).project_trailing(bill, NOW, self.GRACE) == []

    def test_paid_off_debt(self):
        """Test that a debt finished by amount leaves no trailing occurrence."""
        rule = RecurrenceRule(
            type=RecurrenceType.MONTHLY,
            start_date=date(2024, 1, 9),
            end_condition=AfterTotalAmount(amount=Decimal("3000")),
        )
        debt = _bill(
            kind=ObligationKind.DEBT,
            due_day=None,
            recurrence_rule=rule,
            total_paid_amount=Decimal("3000"),
        )
        assert OccurrenceProjector(200).project_trailing(debt, NOW, self.GRACE) == []

    def test_inactive_obligation(self):
        bill = _bill(due_day=9, is_active=False)
        assert OccurrenceProjector(200).project_trailing(bill, NOW, self.GRACE) == []
