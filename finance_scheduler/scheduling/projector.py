"""
Occurrence Projection

Turns an obligation's recurrence rule into the concrete dates the scheduler
has to act on right now.

DESIGN DECISION: Two policies, chosen per obligation kind through an
explicit table.
- ROLLING: at most one upcoming occurrence. Bills, debts and the like are
  handled one period at a time; the next period is materialized once the
  current one has passed.
- WINDOW: every occurrence inside the planning window, capped per
  obligation. Used for recurring income.

Occurrences that have just passed are projected separately
(project_trailing) so their after-due and late reminders survive the day
the rolling policy moves on.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from finance_scheduler.config import get_settings
from finance_scheduler.models.obligation import (
    ObligationKind,
    RecurringObligation,
    ReminderOffset,
    ReminderTiming,
)


class ProjectionPolicy(str, Enum):
    ROLLING = "rolling"
    WINDOW = "window"


POLICY_BY_KIND: dict[ObligationKind, ProjectionPolicy] = {
    ObligationKind.BILL: ProjectionPolicy.ROLLING,
    ObligationKind.SUBSCRIPTION: ProjectionPolicy.ROLLING,
    ObligationKind.DEBT: ProjectionPolicy.ROLLING,
    ObligationKind.LENDING: ProjectionPolicy.ROLLING,
    ObligationKind.BUDGET: ProjectionPolicy.ROLLING,
    ObligationKind.SAVINGS_GOAL: ProjectionPolicy.ROLLING,
    ObligationKind.RECURRING_INCOME: ProjectionPolicy.WINDOW,
}


class ProjectedOccurrence(BaseModel):
    """One occurrence and the reminders that apply to it."""
    model_config = ConfigDict(frozen=True)

    occurrence_date: date
    reminder_offsets: tuple[ReminderOffset, ...] = ()


class OccurrenceProjector:
    """
    Bounds an obligation's schedule to the planning window.

    Guarantees: no date before today, none after today + window, none past
    the rule's end condition, nothing for inactive or exhausted obligations.
    """

    def __init__(self, max_occurrences: Optional[int] = None):
        self._max_occurrences = (
            max_occurrences or get_settings().engine.max_occurrences_per_obligation
        )
        self._policies: dict[
            ProjectionPolicy,
            Callable[[RecurringObligation, date, date, int], list[date]],
        ] = {
            ProjectionPolicy.ROLLING: self._project_rolling,
            ProjectionPolicy.WINDOW: self._project_window,
        }

    def project(
        self,
        obligation: RecurringObligation,
        now: Union[date, datetime],
        planning_window_days: int,
    ) -> list[ProjectedOccurrence]:
        """
        Compute the occurrences to schedule for one obligation.

        Args:
            obligation: The obligation to project
            now: Current time; only its date matters
            planning_window_days: How far ahead to look

        Returns:
            Projected occurrences in date order
        """
        if not obligation.is_active:
            return []

        today = now.date() if isinstance(now, datetime) else now
        horizon = today + timedelta(days=planning_window_days)
        policy = POLICY_BY_KIND[obligation.kind]
        dates = self._policies[policy](obligation, today, horizon, planning_window_days)

        offsets = tuple(obligation.effective_offsets())
        return [
            ProjectedOccurrence(occurrence_date=d, reminder_offsets=offsets)
            for d in dates
        ]

    def _project_rolling(
        self,
        obligation: RecurringObligation,
        today: date,
        horizon: date,
        planning_window_days: int,
    ) -> list[date]:
        rule = obligation.effective_rule()
        paid = obligation.total_paid_amount
        cached = obligation.next_due_date

        if cached is not None and cached >= today:
            candidate: Optional[date] = cached
        elif rule is not None:
            # The cached date has passed (or was never set): advance to the
            # first occurrence from today on, paid or not.
            candidate = rule.next_occurrence_after(today - timedelta(days=1), paid)
        else:
            return []

        if candidate is None or candidate > horizon:
            return []
        if rule is not None and rule.has_ended(candidate, paid):
            return []
        return [candidate]

    def _project_window(
        self,
        obligation: RecurringObligation,
        today: date,
        horizon: date,
        planning_window_days: int,
    ) -> list[date]:
        rule = obligation.effective_rule()
        if rule is None:
            return self._project_rolling(obligation, today, horizon, planning_window_days)

        cap = max(1, min(planning_window_days, self._max_occurrences))
        return rule.occurrences_between(
            today,
            horizon,
            limit=cap,
            paid_amount=obligation.total_paid_amount,
        )

    def project_trailing(
        self,
        obligation: RecurringObligation,
        now: Union[date, datetime],
        grace: timedelta,
    ) -> list[ProjectedOccurrence]:
        """
        Occurrences before today whose reminders may still be due.

        Looks back far enough to cover the longest after-due reminder plus
        the late grace period.

        Args:
            obligation: The obligation to project
            now: Current time; only its date matters
            grace: How long a missed reminder may still fire late

        Returns:
            Passed occurrences in date order
        """
        if not obligation.is_active:
            return []

        today = now.date() if isinstance(now, datetime) else now
        offsets = tuple(obligation.effective_offsets())
        trailing = max(
            (o.offset for o in offsets if o.timing == ReminderTiming.AFTER_DUE),
            default=timedelta(0),
        )
        # One extra day: an on-due reminder fires hours after midnight.
        span = grace + trailing + timedelta(days=1)
        earliest = today - timedelta(days=span.days + (1 if span.seconds else 0))
        yesterday = today - timedelta(days=1)

        rule = obligation.effective_rule()
        paid = obligation.total_paid_amount
        dates: set[date] = set()

        cached = obligation.next_due_date
        if cached is not None and earliest <= cached <= yesterday:
            if rule is None or not rule.has_ended(cached, paid):
                dates.add(cached)
        if rule is not None:
            dates.update(rule.occurrences_between(earliest, yesterday, paid_amount=paid))

        return [
            ProjectedOccurrence(occurrence_date=d, reminder_offsets=offsets)
            for d in sorted(dates)
        ]
