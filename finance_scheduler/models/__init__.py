"""
Data Models Package

Pydantic models for recurrence rules, obligations, scheduled notifications
and audit events. Everything the scheduler reads or writes conforms to these.
"""

from finance_scheduler.models.recurrence import (
    AfterDate,
    AfterOccurrences,
    AfterTotalAmount,
    EndCondition,
    Indefinite,
    MonthDay,
    RecurrenceRule,
    RecurrenceType,
    RecurrenceUnit,
    Weekday,
)
from finance_scheduler.models.obligation import (
    ChannelPreference,
    ObligationKind,
    RecurringObligation,
    ReminderCondition,
    ReminderOffset,
    ReminderTiming,
    ReminderUnit,
)
from finance_scheduler.models.notification import (
    ONCE_CONSUMING_EVENTS,
    SECTION_BY_KIND,
    SECTION_PRIORITY,
    HubModuleSettings,
    NotificationChannel,
    NotificationEvent,
    NotificationHistoryEntry,
    ScheduledNotificationRecord,
    Section,
    SyncResult,
    make_notification_key,
    make_once_key,
)
from finance_scheduler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Recurrence
    "AfterDate",
    "AfterOccurrences",
    "AfterTotalAmount",
    "EndCondition",
    "Indefinite",
    "MonthDay",
    "RecurrenceRule",
    "RecurrenceType",
    "RecurrenceUnit",
    "Weekday",
    # Obligations
    "ChannelPreference",
    "ObligationKind",
    "RecurringObligation",
    "ReminderCondition",
    "ReminderOffset",
    "ReminderTiming",
    "ReminderUnit",
    # Notifications
    "ONCE_CONSUMING_EVENTS",
    "SECTION_BY_KIND",
    "SECTION_PRIORITY",
    "HubModuleSettings",
    "NotificationChannel",
    "NotificationEvent",
    "NotificationHistoryEntry",
    "ScheduledNotificationRecord",
    "Section",
    "SyncResult",
    "make_notification_key",
    "make_once_key",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
