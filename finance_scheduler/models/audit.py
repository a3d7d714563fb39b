"""
Audit Models for the Finance Reminder Scheduler

A sync produces audit events for its start and end, for each hub call the
hub refused, and for bulk cancellations and settings changes. Events are
only ever appended.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Reconciliation
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    PENDING_BUDGET_EXCEEDED = "pending_budget_exceeded"

    # Per-item hub mutations
    NOTIFICATION_SCHEDULE_FAILED = "notification_schedule_failed"
    NOTIFICATION_CANCEL_FAILED = "notification_cancel_failed"

    # Bulk operations
    MODULE_CLEARED = "module_cleared"
    ENTITY_NOTIFICATIONS_CANCELLED = "entity_notifications_cancelled"

    # Settings
    SETTINGS_CHANGED = "settings_changed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """A single audit event."""

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what is this about?
    module_id: Optional[str] = None
    entity_id: Optional[str] = Field(
        default=None,
        description="Obligation or notification key the event relates to"
    )
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together the events of one sync"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "module_id": self.module_id,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sync_completed("finance", result.to_log_dict(), cid)
    """

    @staticmethod
    def sync_started(module_id: str, reason: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            module_id=module_id,
            correlation_id=correlation_id,
            description=f"Sync started ({reason})",
            details={"reason": reason},
        )

    @staticmethod
    def sync_completed(
        module_id: str,
        summary: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if summary.get("failed") else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            severity=severity,
            module_id=module_id,
            correlation_id=correlation_id,
            description=(
                f"Sync completed: {summary.get('scheduled', 0)} scheduled, "
                f"{summary.get('cancelled', 0)} cancelled, {summary.get('failed', 0)} failed"
            ),
            details=summary,
        )

    @staticmethod
    def sync_failed(
        module_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            module_id=module_id,
            correlation_id=correlation_id,
            description="Sync aborted: notification hub unavailable",
            error_message=error_message,
        )

    @staticmethod
    def pending_budget_exceeded(
        module_id: str,
        required: int,
        budget: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_BUDGET_EXCEEDED,
            severity=AuditSeverity.WARNING,
            module_id=module_id,
            correlation_id=correlation_id,
            description=f"{required} notifications required, keeping {budget}",
            details={"required": required, "budget": budget},
        )

    @staticmethod
    def hub_item_failed(
        module_id: str,
        key: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        event_type = (
            AuditEventType.NOTIFICATION_SCHEDULE_FAILED
            if operation == "schedule"
            else AuditEventType.NOTIFICATION_CANCEL_FAILED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            module_id=module_id,
            entity_id=key,
            correlation_id=correlation_id,
            description=f"Hub {operation} failed for {key}",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def module_cleared(module_id: str, cancelled: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MODULE_CLEARED,
            module_id=module_id,
            description=f"Cleared {cancelled} scheduled notifications",
            details={"cancelled": cancelled},
        )

    @staticmethod
    def entity_notifications_cancelled(
        module_id: str,
        entity_id: str,
        section: str,
        cancelled: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_NOTIFICATIONS_CANCELLED,
            module_id=module_id,
            entity_id=entity_id,
            description=f"Cancelled {cancelled} {section} notifications",
            details={"section": section, "cancelled": cancelled},
        )

    @staticmethod
    def settings_changed(module_id: str, changes: dict) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_CHANGED,
            module_id=module_id,
            description="Notification settings changed",
            details=changes,
        )
