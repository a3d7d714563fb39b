"""
Notification Models

Records of what the notification hub holds, and the report a sync returns.

DESIGN DECISION: A scheduled record is identified by a stable key derived
from (entity, occurrence date, reminder offset). Required and previously
scheduled items compute their key the same way, so reconciliation is a set
difference on keys. Records are never edited; a change is cancel + recreate.
"""

import hashlib
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from finance_scheduler.models.obligation import ObligationKind


class Section(str, Enum):
    """Settings-gated groups of obligations, in scheduling priority order."""
    BILLS = "bills"
    DEBTS = "debts"
    LENDING = "lending"
    BUDGETS = "budgets"
    SAVINGS_GOALS = "savings_goals"
    RECURRING_INCOME = "recurring_income"


# When the pending budget is exceeded, earlier sections win.
SECTION_PRIORITY: tuple[Section, ...] = tuple(Section)

SECTION_BY_KIND: dict[ObligationKind, Section] = {
    ObligationKind.BILL: Section.BILLS,
    ObligationKind.SUBSCRIPTION: Section.BILLS,
    ObligationKind.DEBT: Section.DEBTS,
    ObligationKind.LENDING: Section.LENDING,
    ObligationKind.BUDGET: Section.BUDGETS,
    ObligationKind.SAVINGS_GOAL: Section.SAVINGS_GOALS,
    ObligationKind.RECURRING_INCOME: Section.RECURRING_INCOME,
}


class NotificationChannel(str, Enum):
    REGULAR = "regular"
    ALARM = "alarm"


def make_notification_key(
    module_id: str,
    source_entity_id: str,
    occurrence_date: date,
    offset_fingerprint: str,
) -> str:
    """
    Stable identity of one reminder for one occurrence.

    The same inputs always give the same key, across processes and restarts.
    """
    raw = f"{source_entity_id}|{occurrence_date.isoformat()}|{offset_fingerprint}"
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
    return f"{module_id}:{digest}"


def make_once_key(source_entity_id: str, reminder_id: str, occurrence_date: date) -> str:
    """Identity of a once-only reminder, carried in record extras."""
    return f"{source_entity_id}:{reminder_id}:{occurrence_date.isoformat()}"


class ScheduledNotificationRecord(BaseModel):
    """One notification as stored in the hub."""
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    module_id: str
    source_entity_id: str
    section: Section
    occurrence_date: date
    fire_at: datetime
    channel: NotificationChannel = NotificationChannel.REGULAR
    title: str
    body: str = ""
    extras: dict[str, Any] = Field(default_factory=dict)

    @property
    def content_signature(self) -> tuple[str, str, str]:
        """What the user would see; a difference here forces a replace."""
        return (self.channel.value, self.title, self.body)

    def to_log_dict(self) -> dict:
        return {
            "key": self.key,
            "source_entity_id": self.source_entity_id,
            "section": self.section.value,
            "occurrence_date": self.occurrence_date.isoformat(),
            "fire_at": self.fire_at.isoformat(),
            "channel": self.channel.value,
        }


class NotificationEvent(str, Enum):
    """Lifecycle events a hub records in its history."""
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    TAPPED = "tapped"
    ACTION = "action"
    MISSED = "missed"
    SNOOZED = "snoozed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# A once-only reminder whose latest event is one of these is used up.
ONCE_CONSUMING_EVENTS = frozenset({
    NotificationEvent.SCHEDULED,
    NotificationEvent.DELIVERED,
    NotificationEvent.TAPPED,
    NotificationEvent.ACTION,
    NotificationEvent.MISSED,
})


class NotificationHistoryEntry(BaseModel):
    """One lifecycle event for one notification key."""
    model_config = ConfigDict(frozen=True)

    key: str
    module_id: str
    event: NotificationEvent
    extras: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_record(
        cls,
        record: "ScheduledNotificationRecord",
        event: NotificationEvent,
    ) -> "NotificationHistoryEntry":
        return cls(key=record.key, module_id=record.module_id, event=event, extras=record.extras)


class HubModuleSettings(BaseModel):
    """Per-module switches kept by the hub."""

    module_id: str
    enabled: bool = True
    updated_at: Optional[datetime] = None


class SyncResult(BaseModel):
    """
    What a reconciliation changed.

    `failed` counts per-item hub errors; those items stay required and are
    retried by the next sync. `dropped` counts required items left out
    because the pending budget was full.
    """

    scheduled: int = 0
    cancelled: int = 0
    failed: int = 0
    dropped: int = 0
    scheduled_by_section: dict[Section, int] = Field(default_factory=dict)
    cancelled_by_section: dict[Section, int] = Field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def changed(self) -> bool:
        return bool(self.scheduled or self.cancelled)

    def to_log_dict(self) -> dict:
        return {
            "scheduled": self.scheduled,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "dropped": self.dropped,
            "scheduled_by_section": {s.value: n for s, n in self.scheduled_by_section.items()},
            "cancelled_by_section": {s.value: n for s, n in self.cancelled_by_section.items()},
        }
