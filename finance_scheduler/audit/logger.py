"""
Audit Logger

DESIGN DECISION: Each sync leaves a trail: when it started, what it
changed, which hub calls were refused, and whether the hub was reachable.
Events of one sync share a correlation id.

Events always go to the structured local log. With an audit store
configured they are persisted too; a failing store is reported in the
local log and the sync carries on.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_scheduler.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finance_scheduler.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog for JSON output."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """Writes audit events for the sync engine and the trigger layer."""

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("finance_scheduler.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns:
            False when the audit store rejected the event, True otherwise
        """
        log_dict = event.to_log_dict()
        level = {
            AuditSeverity.CRITICAL: self._logger.error,
            AuditSeverity.ERROR: self._logger.error,
            AuditSeverity.WARNING: self._logger.warning,
        }.get(event.severity, self._logger.info)
        level("audit_event", **log_dict)

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_store_write_failed",
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def log_sync_started(
        self,
        module_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_started(module_id, reason, correlation_id))

    async def log_sync_completed(
        self,
        module_id: str,
        summary: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_completed(module_id, summary, correlation_id))

    async def log_sync_failed(
        self,
        module_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.sync_failed(module_id, error_message, correlation_id))

    async def log_pending_budget_exceeded(
        self,
        module_id: str,
        required: int,
        budget: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.pending_budget_exceeded(module_id, required, budget, correlation_id)
        )

    async def log_hub_item_failed(
        self,
        module_id: str,
        key: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a single create/cancel the hub refused."""
        await self.log(
            AuditEventBuilder.hub_item_failed(
                module_id=module_id,
                key=key,
                operation=operation,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )

    async def log_module_cleared(self, module_id: str, cancelled: int) -> None:
        await self.log(AuditEventBuilder.module_cleared(module_id, cancelled))

    async def log_entity_cancelled(
        self,
        module_id: str,
        entity_id: str,
        section: str,
        cancelled: int,
    ) -> None:
        await self.log(
            AuditEventBuilder.entity_notifications_cancelled(
                module_id, entity_id, section, cancelled
            )
        )

    async def log_settings_changed(self, module_id: str, changes: dict) -> None:
        await self.log(AuditEventBuilder.settings_changed(module_id, changes))


def create_correlation_id() -> UUID:
    """New id tying together the events of one sync."""
    return uuid4()
