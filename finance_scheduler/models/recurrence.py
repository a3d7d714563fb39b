"""
Recurrence Rules

A RecurrenceRule is an immutable description of a repeating schedule
(every N days, every other Monday, the 31st of each month, ...) together with
the algorithm that evaluates it.

DESIGN DECISION: Rules are pydantic models with frozen=True.
A user editing a schedule produces a brand new rule; nothing ever mutates a
rule in place, so any rule can be safely cached, hashed and shared.

DESIGN DECISION: The five recurrence types are an enum plus per-type payload
fields, evaluated through a single dispatch table. There is no class per type.

CALENDAR RULES (reproduced exactly, these are business rules):
1. A day of month that does not exist in the target month is clamped to the
   month's last day. Day 31 in February is Feb 28, or Feb 29 in a leap year.
   It never rolls over into the next month.
2. Feb 29 yearly rules fall on Feb 28 in non-leap years.
3. With skip_weekends, an occurrence on Saturday or Sunday moves to the
   following Monday. Dates never move earlier.
"""

import calendar
import json
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum, IntEnum
from functools import lru_cache
from typing import Annotated, Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ONE_DAY = timedelta(days=1)

# Upper bound on interval-aligned periods a custom rule scans before
# concluding it can never match.
MAX_CUSTOM_PERIODS = 1000

SERIALIZATION_VERSION = 2


# =============================================================================
# ENUMS
# =============================================================================

class RecurrenceType(str, Enum):
    """How a rule repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class RecurrenceUnit(str, Enum):
    """The period a custom rule's interval steps over."""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class Weekday(IntEnum):
    """Weekdays numbered like date.weekday()."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


WEEKDAY_ABBREVIATIONS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class MonthDay(BaseModel):
    """A (month, day) pair used by yearly rules."""
    model_config = ConfigDict(frozen=True)

    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)

    @model_validator(mode="after")
    def validate_day_exists(self) -> "MonthDay":
        # Feb 29 is allowed; it is clamped in non-leap years.
        if self.day > calendar.monthrange(2000, self.month)[1]:
            raise ValueError(f"Month {self.month} has no day {self.day}")
        return self


# =============================================================================
# END CONDITIONS - tagged variants
# =============================================================================

class Indefinite(BaseModel):
    """The rule never ends."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["indefinite"] = "indefinite"


class AfterOccurrences(BaseModel):
    """The rule ends after a fixed number of occurrences."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["after_occurrences"] = "after_occurrences"
    count: int = Field(..., ge=1)


class AfterDate(BaseModel):
    """The rule ends after the given date (inclusive)."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["after_date"] = "after_date"
    end_date: date


class AfterTotalAmount(BaseModel):
    """
    The rule ends once the cumulative paid amount reaches a cap.

    The rule itself does not know what has been paid; callers pass the
    cumulative amount when they evaluate it.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["after_total_amount"] = "after_total_amount"
    amount: Decimal = Field(..., gt=0)


EndCondition = Annotated[
    Union[Indefinite, AfterOccurrences, AfterDate, AfterTotalAmount],
    Field(discriminator="kind"),
]


# =============================================================================
# CALENDAR HELPERS
# =============================================================================

def _as_date(value: date) -> date:
    """Accept datetimes wherever a date is expected."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _last_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _clamped(year: int, month: int, day: int) -> date:
    """Build a date, clamping the day to the month's last valid day."""
    return date(year, month, min(day, _last_day(year, month)))


def _month_index(value: date) -> int:
    return value.year * 12 + value.month - 1


def _year_month(index: int) -> tuple[int, int]:
    year, month0 = divmod(index, 12)
    return year, month0 + 1


def _week_start(value: date) -> date:
    return value - timedelta(days=value.weekday())


def _shift_off_weekend(value: date) -> date:
    if value.weekday() == Weekday.SATURDAY:
        return value + timedelta(days=2)
    if value.weekday() == Weekday.SUNDAY:
        return value + ONE_DAY
    return value


def _ordinal(day: int) -> str:
    if 11 <= day <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


# =============================================================================
# RECURRENCE RULE
# =============================================================================

class RecurrenceRule(BaseModel):
    """
    Immutable description of a repeating schedule.

    Selector fields by type:
    - daily:   none (every `interval` days from start_date)
    - weekly:  days_of_week (defaults to start_date's weekday)
    - monthly: days_of_month (defaults to start_date's day)
    - yearly:  day_of_year (defaults to start_date's month/day)
    - custom:  any combination, plus `unit`

    Selectors a type does not use are rejected, as are explicitly empty
    selector sets.
    """
    model_config = ConfigDict(frozen=True)

    type: RecurrenceType
    interval: int = Field(
        default=1,
        ge=1,
        description="Repeat every N periods"
    )
    days_of_week: Optional[frozenset[Weekday]] = None
    days_of_month: Optional[frozenset[int]] = None
    day_of_year: Optional[MonthDay] = None
    unit: RecurrenceUnit = Field(
        default=RecurrenceUnit.DAYS,
        description="Period stepped by `interval` (custom rules only)"
    )
    start_date: date
    end_condition: EndCondition = Field(default_factory=Indefinite)
    skip_weekends: bool = False

    @field_validator("start_date", mode="before")
    @classmethod
    def normalize_start_date(cls, v: Any) -> Any:
        return _as_date(v) if isinstance(v, datetime) else v

    @field_validator("days_of_month")
    @classmethod
    def validate_days_of_month(
        cls, v: Optional[frozenset[int]]
    ) -> Optional[frozenset[int]]:
        if v is not None and any(day < 1 or day > 31 for day in v):
            raise ValueError("Days of month must be between 1 and 31")
        return v

    @model_validator(mode="after")
    def validate_selectors(self) -> "RecurrenceRule":
        """Reject selector sets that conflict with the rule type."""
        allowed = {
            RecurrenceType.DAILY: set(),
            RecurrenceType.WEEKLY: {"days_of_week"},
            RecurrenceType.MONTHLY: {"days_of_month"},
            RecurrenceType.YEARLY: {"day_of_year"},
            RecurrenceType.CUSTOM: {"days_of_week", "days_of_month", "day_of_year"},
        }[self.type]

        for name in ("days_of_week", "days_of_month", "day_of_year"):
            value = getattr(self, name)
            if value is None:
                continue
            if name not in allowed:
                raise ValueError(f"{name} is not used by {self.type.value} rules")
            if name != "day_of_year" and len(value) == 0:
                raise ValueError(f"{name} must not be empty")

        if "unit" in self.model_fields_set and self.type != RecurrenceType.CUSTOM:
            raise ValueError("unit is only used by custom rules")

        if isinstance(self.end_condition, AfterDate):
            if self.end_condition.end_date < self.start_date:
                raise ValueError("End date cannot be before start date")

        return self

    # -------------------------------------------------------------------------
    # Resolved selectors
    # -------------------------------------------------------------------------

    @property
    def weekdays(self) -> frozenset[int]:
        if self.days_of_week:
            return frozenset(int(day) for day in self.days_of_week)
        return frozenset({self.start_date.weekday()})

    @property
    def month_days(self) -> tuple[int, ...]:
        if self.days_of_month:
            return tuple(sorted(self.days_of_month))
        return (self.start_date.day,)

    @property
    def year_day(self) -> MonthDay:
        if self.day_of_year is not None:
            return self.day_of_year
        return MonthDay(month=self.start_date.month, day=self.start_date.day)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def next_occurrence_after(
        self,
        after: date,
        paid_amount: Optional[Decimal] = None,
    ) -> Optional[date]:
        """
        Earliest occurrence strictly later than `after`.

        Returns None when the rule has no further occurrences: the end date
        passed, the occurrence count is exhausted, or (when `paid_amount` is
        given) the total-amount cap has been reached.
        """
        if self._amount_cap_reached(paid_amount):
            return None

        candidate = _next_shifted(self, _as_date(after))
        if candidate is None:
            return None

        limit = _occurrence_limit(self)
        if limit is not None and candidate > limit:
            return None
        return candidate

    def occurrences_between(
        self,
        start: date,
        end: date,
        limit: Optional[int] = None,
        paid_amount: Optional[Decimal] = None,
    ) -> list[date]:
        """All occurrences in [start, end], in order, optionally capped."""
        start, end = _as_date(start), _as_date(end)
        results: list[date] = []
        cursor = start - ONE_DAY

        while limit is None or len(results) < limit:
            occurrence = self.next_occurrence_after(cursor, paid_amount)
            if occurrence is None or occurrence > end:
                break
            results.append(occurrence)
            cursor = occurrence

        return results

    def is_due_on(self, day: date, paid_amount: Optional[Decimal] = None) -> bool:
        """True iff `day` is produced by the occurrence logic."""
        day = _as_date(day)
        if self._amount_cap_reached(paid_amount):
            return False

        if self.skip_weekends:
            if day.weekday() >= Weekday.SATURDAY:
                return False
            sources = [day]
            if day.weekday() == Weekday.MONDAY:
                sources += [day - ONE_DAY, day - timedelta(days=2)]
            hit = any(_is_raw_occurrence(self, source) for source in sources)
        else:
            hit = _is_raw_occurrence(self, day)

        if not hit:
            return False
        limit = _occurrence_limit(self)
        return limit is None or day <= limit

    def has_ended(self, on: date, paid_amount: Optional[Decimal] = None) -> bool:
        """True when no occurrence can fall on or after `on`."""
        if self._amount_cap_reached(paid_amount):
            return True
        if isinstance(self.end_condition, (AfterDate, AfterOccurrences)):
            limit = _occurrence_limit(self)
            return limit is None or _as_date(on) > limit
        return False

    def _amount_cap_reached(self, paid_amount: Optional[Decimal]) -> bool:
        if not isinstance(self.end_condition, AfterTotalAmount):
            return False
        if paid_amount is None:
            return False
        return paid_amount >= self.end_condition.amount

    def with_due_day(self, due_day: int) -> "RecurrenceRule":
        """Monthly convenience: the same rule targeting a single day."""
        if self.type != RecurrenceType.MONTHLY:
            return self
        return self.model_copy(update={"days_of_month": frozenset({due_day})})

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_serialized(self) -> dict[str, Any]:
        """Compact JSON-compatible encoding, used when persisting schedules."""
        data: dict[str, Any] = {
            "version": SERIALIZATION_VERSION,
            "type": self.type.value,
            "interval": self.interval,
            "start_date": self.start_date.isoformat(),
            "end_condition": self.end_condition.model_dump(mode="json"),
            "skip_weekends": self.skip_weekends,
        }
        if self.days_of_week is not None:
            data["days_of_week"] = sorted(int(day) for day in self.days_of_week)
        if self.days_of_month is not None:
            data["days_of_month"] = sorted(self.days_of_month)
        if self.day_of_year is not None:
            data["day_of_year"] = self.day_of_year.model_dump()
        if self.type == RecurrenceType.CUSTOM:
            data["unit"] = self.unit.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_serialized(), separators=(",", ":"))

    @classmethod
    def from_serialized(cls, blob: Union[str, bytes, Mapping[str, Any]]) -> "RecurrenceRule":
        """
        Rebuild a rule from to_serialized() output (or its JSON text).

        Also reads the older flat format, recognizable by its camelCase
        "startDate" key.

        Raises:
            ValueError: malformed JSON or an invalid rule
        """
        data = json.loads(blob) if isinstance(blob, (str, bytes)) else dict(blob)
        if "startDate" in data:
            return cls._from_legacy(data)
        data.pop("version", None)
        return cls.model_validate(data)

    @classmethod
    def _from_legacy(cls, data: Mapping[str, Any]) -> "RecurrenceRule":
        """Legacy records number weekdays from Sunday=0 and use flat end fields."""
        end_kind = data.get("endCondition") or "never"
        if end_kind == "on_date" and data.get("endDate"):
            end_condition: Any = AfterDate(
                end_date=date.fromisoformat(str(data["endDate"])[:10])
            )
        elif end_kind == "after_occurrences" and data.get("occurrences"):
            end_condition = AfterOccurrences(count=int(data["occurrences"]))
        else:
            end_condition = Indefinite()

        rule_type = RecurrenceType(data["type"])
        fields: dict[str, Any] = {
            "type": rule_type,
            "interval": data.get("interval") or 1,
            "start_date": date.fromisoformat(str(data["startDate"])[:10]),
            "end_condition": end_condition,
            "skip_weekends": bool(data.get("skipWeekends", False)),
        }
        if data.get("daysOfWeek"):
            fields["days_of_week"] = [(int(day) - 1) % 7 for day in data["daysOfWeek"]]
        if data.get("daysOfMonth"):
            fields["days_of_month"] = data["daysOfMonth"]
        if data.get("dayOfYear"):
            fields["day_of_year"] = data["dayOfYear"]
        if rule_type == RecurrenceType.CUSTOM and data.get("unit"):
            fields["unit"] = data["unit"]
        return cls.model_validate(fields)

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    def describe(self) -> str:
        """Human-readable summary, e.g. "Every 2 weeks on Mon, Wed"."""
        n = self.interval
        if self.type == RecurrenceType.DAILY:
            text = "Daily" if n == 1 else f"Every {n} days"
        elif self.type == RecurrenceType.WEEKLY:
            days = ", ".join(WEEKDAY_ABBREVIATIONS[d] for d in sorted(self.weekdays))
            text = f"Weekly on {days}" if n == 1 else f"Every {n} weeks on {days}"
        elif self.type == RecurrenceType.MONTHLY:
            days = ", ".join(_ordinal(d) for d in self.month_days)
            text = f"Monthly on the {days}" if n == 1 else f"Every {n} months on the {days}"
        elif self.type == RecurrenceType.YEARLY:
            md = self.year_day
            when = f"{calendar.month_abbr[md.month]} {_ordinal(md.day)}"
            text = f"Yearly on {when}" if n == 1 else f"Every {n} years on {when}"
        else:
            unit = self.unit.value if n != 1 else self.unit.value.rstrip("s")
            text = f"Every {n} {unit}"
            if self.days_of_week:
                text += " on " + ", ".join(
                    WEEKDAY_ABBREVIATIONS[d] for d in sorted(self.weekdays)
                )
        if self.skip_weekends:
            text += " (weekdays only)"
        return text

    def __str__(self) -> str:
        return self.describe()


# =============================================================================
# EVALUATION - one stepping function per type, single dispatch table
# =============================================================================
#
# Each stepper returns the first "raw" occurrence strictly after `after`
# and never before start_date. Weekend shifting and end conditions are
# applied on top of the raw sequence.

def _next_daily(rule: RecurrenceRule, after: date) -> Optional[date]:
    start = rule.start_date
    if after < start:
        return start
    steps = (after - start).days // rule.interval + 1
    return start + timedelta(days=steps * rule.interval)


def _next_weekly(rule: RecurrenceRule, after: date) -> Optional[date]:
    weekdays = rule.weekdays
    anchor = _week_start(rule.start_date)
    candidate = max(after + ONE_DAY, rule.start_date)

    while True:
        week_index = (candidate - anchor).days // 7
        offset = week_index % rule.interval
        if offset:
            candidate = anchor + timedelta(weeks=week_index + rule.interval - offset)
            continue

        week_end = anchor + timedelta(weeks=week_index, days=6)
        day = candidate
        while day <= week_end:
            if day.weekday() in weekdays:
                return day
            day += ONE_DAY
        candidate = anchor + timedelta(weeks=week_index + rule.interval)


def _next_monthly(rule: RecurrenceRule, after: date) -> Optional[date]:
    floor = max(after + ONE_DAY, rule.start_date)
    base = _month_index(rule.start_date)
    index = _month_index(floor)
    offset = (index - base) % rule.interval
    if offset:
        index += rule.interval - offset

    while True:
        year, month = _year_month(index)
        if year > date.max.year:
            return None
        # Two target days can clamp onto the same date (30 and 31 in Feb).
        for candidate in sorted({_clamped(year, month, d) for d in rule.month_days}):
            if candidate >= floor:
                return candidate
        index += rule.interval


def _next_yearly(rule: RecurrenceRule, after: date) -> Optional[date]:
    floor = max(after + ONE_DAY, rule.start_date)
    target = rule.year_day
    year = floor.year
    offset = (year - rule.start_date.year) % rule.interval
    if offset:
        year += rule.interval - offset

    while year <= date.max.year:
        candidate = _clamped(year, target.month, target.day)
        if candidate >= floor:
            return candidate
        year += rule.interval
    return None


def _period_index(rule: RecurrenceRule, day: date) -> int:
    start = rule.start_date
    if rule.unit == RecurrenceUnit.DAYS:
        return (day - start).days
    if rule.unit == RecurrenceUnit.WEEKS:
        return (day - _week_start(start)).days // 7
    if rule.unit == RecurrenceUnit.MONTHS:
        return _month_index(day) - _month_index(start)
    return day.year - start.year


def _period_bounds(rule: RecurrenceRule, index: int) -> Optional[tuple[date, date]]:
    start = rule.start_date
    try:
        if rule.unit == RecurrenceUnit.DAYS:
            day = start + timedelta(days=index)
            return day, day
        if rule.unit == RecurrenceUnit.WEEKS:
            first = _week_start(start) + timedelta(weeks=index)
            return first, first + timedelta(days=6)
    except OverflowError:
        return None

    if rule.unit == RecurrenceUnit.MONTHS:
        year, month = _year_month(_month_index(start) + index)
        if year > date.max.year:
            return None
        return date(year, month, 1), date(year, month, _last_day(year, month))

    year = start.year + index
    if year > date.max.year:
        return None
    return date(year, 1, 1), date(year, 12, 31)


def _custom_matches(rule: RecurrenceRule, day: date) -> bool:
    """A day inside an active period is due if any selector matches it."""
    has_selector = False

    if rule.days_of_week:
        has_selector = True
        if day.weekday() in rule.weekdays:
            return True
    if rule.days_of_month:
        has_selector = True
        last = _last_day(day.year, day.month)
        if any(min(target, last) == day.day for target in rule.days_of_month):
            return True
    if rule.day_of_year is not None:
        has_selector = True
        target = rule.day_of_year
        if day == _clamped(day.year, target.month, target.day):
            return True

    if has_selector:
        return False

    # No selector: each period's anchor day, taken from start_date.
    start = rule.start_date
    if rule.unit == RecurrenceUnit.DAYS:
        return True
    if rule.unit == RecurrenceUnit.WEEKS:
        return day.weekday() == start.weekday()
    if rule.unit == RecurrenceUnit.MONTHS:
        return day.day == min(start.day, _last_day(day.year, day.month))
    return day == _clamped(day.year, start.month, start.day)


def _next_custom(rule: RecurrenceRule, after: date) -> Optional[date]:
    floor = max(after + ONE_DAY, rule.start_date)
    index = _period_index(rule, floor)
    offset = index % rule.interval
    if offset:
        index += rule.interval - offset

    for _ in range(MAX_CUSTOM_PERIODS):
        bounds = _period_bounds(rule, index)
        if bounds is None:
            return None
        first, last = bounds
        day = max(first, floor)
        while day <= last:
            if _custom_matches(rule, day):
                return day
            day += ONE_DAY
        index += rule.interval
    return None


_RAW_STEPPERS: dict[RecurrenceType, Callable[[RecurrenceRule, date], Optional[date]]] = {
    RecurrenceType.DAILY: _next_daily,
    RecurrenceType.WEEKLY: _next_weekly,
    RecurrenceType.MONTHLY: _next_monthly,
    RecurrenceType.YEARLY: _next_yearly,
    RecurrenceType.CUSTOM: _next_custom,
}


def _next_raw(rule: RecurrenceRule, after: date) -> Optional[date]:
    try:
        return _RAW_STEPPERS[rule.type](rule, after)
    except OverflowError:
        # Ran past date.max
        return None


def _is_raw_occurrence(rule: RecurrenceRule, day: date) -> bool:
    if day < rule.start_date:
        return False
    return _next_raw(rule, day - ONE_DAY) == day


def _next_shifted(rule: RecurrenceRule, after: date) -> Optional[date]:
    """Next occurrence with weekend skipping applied, ignoring end conditions."""
    if not rule.skip_weekends:
        return _next_raw(rule, after)

    # A raw Saturday or Sunday up to two days back can shift past `after`.
    cursor = after - timedelta(days=2) if after.toordinal() > 2 else after
    while True:
        raw = _next_raw(rule, cursor)
        if raw is None:
            return None
        shifted = _shift_off_weekend(raw)
        if shifted > after:
            return shifted
        cursor = raw


@lru_cache(maxsize=512)
def _occurrence_limit(rule: RecurrenceRule) -> Optional[date]:
    """
    Last date an occurrence may fall on, or None when unbounded.

    For AfterOccurrences this is the n-th occurrence, found by walking the
    sequence from start_date. Rules are frozen, so the result is cached.
    """
    end = rule.end_condition
    if isinstance(end, AfterDate):
        return end.end_date
    if not isinstance(end, AfterOccurrences):
        return None

    last: Optional[date] = None
    cursor = rule.start_date - ONE_DAY
    for _ in range(end.count):
        occurrence = _next_shifted(rule, cursor)
        if occurrence is None:
            break
        last = cursor = occurrence
    return last
