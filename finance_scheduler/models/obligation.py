"""
Obligation Models

A RecurringObligation is anything with money attached that comes back on a
schedule: bills, subscriptions, debts in both directions, recurring income,
budget periods and savings-goal deadlines.

DESIGN DECISION: One model with a `kind` discriminator instead of one class
per kind. The scheduler treats them all the same way; only the projection
policy and the message wording depend on the kind.

DESIGN DECISION: next_due_date is a cached suggestion maintained by the
owning feature. The projector trusts it while it is still in the future and
falls back to the recurrence rule once it has passed.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from finance_scheduler.models.recurrence import RecurrenceRule, RecurrenceType


# =============================================================================
# ENUMS
# =============================================================================

class ObligationKind(str, Enum):
    """What sort of obligation this is."""
    BILL = "bill"
    SUBSCRIPTION = "subscription"
    DEBT = "debt"            # money the user owes
    LENDING = "lending"      # money owed to the user
    RECURRING_INCOME = "recurring_income"
    BUDGET = "budget"
    SAVINGS_GOAL = "savings_goal"


class ReminderTiming(str, Enum):
    BEFORE = "before"
    ON_DUE = "on_due"
    AFTER_DUE = "after_due"


class ReminderUnit(str, Enum):
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"    # counted as 30 days


class ReminderCondition(str, Enum):
    """When a reminder should actually be delivered."""
    ALWAYS = "always"
    IF_UNPAID = "if_unpaid"
    IF_OVERDUE = "if_overdue"
    ONCE = "once"    # at most once per occurrence, tracked through hub history


class ChannelPreference(str, Enum):
    AUTO = "auto"
    REGULAR = "regular"
    ALARM = "alarm"


# =============================================================================
# REMINDER OFFSET
# =============================================================================

class ReminderOffset(BaseModel):
    """
    One reminder relative to an occurrence, e.g. "3 days before at 09:00".

    hour=None means "use the user's default reminder hour". Hours-based
    offsets are measured from that reminder time on the due date.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default="default",
        min_length=1,
        max_length=64,
        description="Stable identifier, part of the notification key"
    )
    timing: ReminderTiming = ReminderTiming.BEFORE
    value: int = Field(default=0, ge=0)
    unit: ReminderUnit = ReminderUnit.DAYS
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    channel_preference: ChannelPreference = ChannelPreference.AUTO
    condition: ReminderCondition = ReminderCondition.ALWAYS
    enabled: bool = True
    title_template: Optional[str] = Field(default=None, max_length=200)
    body_template: Optional[str] = Field(default=None, max_length=500)

    @property
    def offset(self) -> timedelta:
        if self.timing == ReminderTiming.ON_DUE:
            return timedelta(0)
        if self.unit == ReminderUnit.HOURS:
            return timedelta(hours=self.value)
        if self.unit == ReminderUnit.WEEKS:
            return timedelta(weeks=self.value)
        if self.unit == ReminderUnit.MONTHS:
            return timedelta(days=30 * self.value)
        return timedelta(days=self.value)

    def resolved_hour(self, default_hour: int) -> int:
        return default_hour if self.hour is None else self.hour

    def fire_time(self, occurrence_date: date, default_hour: int) -> datetime:
        """The local instant this reminder fires for one occurrence."""
        base = datetime.combine(
            occurrence_date, time(self.resolved_hour(default_hour), self.minute)
        )
        if self.timing == ReminderTiming.BEFORE:
            return base - self.offset
        return base + self.offset

    def fingerprint(self, default_hour: int) -> str:
        """Identifies this offset inside a notification key."""
        return ":".join([
            self.id,
            self.timing.value,
            str(self.value),
            self.unit.value,
            str(self.resolved_hour(default_hour)),
            str(self.minute),
        ])

    @classmethod
    def days_before(cls, days: int, **kwargs) -> "ReminderOffset":
        if days == 0:
            return cls(id="on_due", timing=ReminderTiming.ON_DUE, **kwargs)
        return cls(id=f"before_{days}d", value=days, **kwargs)


# Savings goals nag progressively as the deadline approaches.
SAVINGS_GOAL_OFFSETS = tuple(
    ReminderOffset.days_before(days) for days in (14, 7, 3, 1, 0)
)
DEFAULT_OFFSETS = (ReminderOffset.days_before(0),)


# =============================================================================
# RECURRING OBLIGATION
# =============================================================================

class RecurringObligation(BaseModel):
    """
    A bill, subscription, debt, income stream, budget or savings goal.

    Only the fields the scheduler needs live here; balances and history
    belong to the owning feature.
    """

    id: UUID = Field(default_factory=uuid4)
    kind: ObligationKind
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    category_id: Optional[str] = None
    account_id: Optional[str] = None

    # Schedule
    recurrence_rule: Optional[RecurrenceRule] = None
    start_date: date
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    next_due_date: Optional[date] = Field(
        default=None,
        description="Cached next due date; may be stale"
    )
    last_generated_date: Optional[date] = None

    # Payment context
    last_paid_date: Optional[date] = None
    total_paid_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Reminders
    reminder_offsets: list[ReminderOffset] = Field(default_factory=list)
    reminder_enabled: bool = True
    is_active: bool = True

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def validate_reminder_ids_unique(self) -> "RecurringObligation":
        ids = [offset.id for offset in self.reminder_offsets]
        if len(ids) != len(set(ids)):
            raise ValueError("Reminder offset ids must be unique per obligation")
        return self

    def effective_rule(self) -> Optional[RecurrenceRule]:
        """
        The rule the scheduler evaluates.

        due_day overrides the target day of a monthly rule. An obligation
        with a due_day and no rule gets a monthly rule anchored at start_date.
        """
        rule = self.recurrence_rule
        if rule is None:
            if self.due_day is None:
                return None
            return RecurrenceRule(
                type=RecurrenceType.MONTHLY,
                start_date=self.start_date,
                days_of_month=frozenset({self.due_day}),
            )
        if self.due_day is not None:
            return rule.with_due_day(self.due_day)
        return rule

    def effective_offsets(self) -> list[ReminderOffset]:
        """Enabled reminder offsets, falling back to the per-kind defaults."""
        offsets = self.reminder_offsets
        if not offsets:
            if self.kind == ObligationKind.SAVINGS_GOAL:
                offsets = list(SAVINGS_GOAL_OFFSETS)
            else:
                offsets = list(DEFAULT_OFFSETS)
        return [offset for offset in offsets if offset.enabled]

    def is_paid_for(self, occurrence_date: date) -> bool:
        """True when a payment was recorded on or after the occurrence."""
        return self.last_paid_date is not None and self.last_paid_date >= occurrence_date

    def to_log_dict(self) -> dict:
        return {
            "obligation_id": str(self.id),
            "kind": self.kind.value,
            "name": self.name,
            "next_due_date": self.next_due_date.isoformat() if self.next_due_date else None,
            "is_active": self.is_active,
        }
