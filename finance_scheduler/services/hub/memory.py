"""
In-Memory Notification Hub

Holds scheduled records in a dict. Used by tests and as the default hub
when nothing durable is configured.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from finance_scheduler.models.notification import (
    HubModuleSettings,
    NotificationEvent,
    NotificationHistoryEntry,
    ScheduledNotificationRecord,
)
from finance_scheduler.services.hub.interface import (
    HISTORY_LIMIT,
    NotificationHubInterface,
    ScheduleRejectedError,
)


logger = structlog.get_logger(__name__)


class InMemoryNotificationHub(NotificationHubInterface):
    """
    Dict-backed hub.

    Records for a module whose hub-side settings are disabled are rejected,
    the way a real hub refuses to schedule for a muted module.
    """

    def __init__(self, records: Optional[list[ScheduledNotificationRecord]] = None):
        self._records: dict[str, ScheduledNotificationRecord] = {
            record.key: record for record in records or []
        }
        self._modules: dict[str, HubModuleSettings] = {}
        self._history: list[NotificationHistoryEntry] = []
        self.initialized = False

    @property
    def records(self) -> dict[str, ScheduledNotificationRecord]:
        return dict(self._records)

    async def initialize(self) -> None:
        self.initialized = True

    async def get_module_settings(self, module_id: str) -> HubModuleSettings:
        return self._modules.get(module_id) or HubModuleSettings(module_id=module_id)

    async def set_module_settings(
        self,
        module_id: str,
        settings: HubModuleSettings,
    ) -> None:
        self._modules[module_id] = settings.model_copy(
            update={"updated_at": datetime.now(timezone.utc)}
        )

    async def schedule(self, record: ScheduledNotificationRecord) -> None:
        module = await self.get_module_settings(record.module_id)
        if not module.enabled:
            raise ScheduleRejectedError(
                f"Module {record.module_id} is disabled in the hub"
            )
        self._records[record.key] = record
        self._remember(NotificationHistoryEntry.for_record(record, NotificationEvent.SCHEDULED))
        logger.debug("hub_scheduled", key=record.key)

    async def cancel(self, key: str) -> bool:
        removed = self._records.pop(key, None)
        if removed is None:
            return False
        self._remember(NotificationHistoryEntry.for_record(removed, NotificationEvent.CANCELLED))
        return True

    async def list_scheduled(self, module_id: str) -> list[ScheduledNotificationRecord]:
        return sorted(
            (r for r in self._records.values() if r.module_id == module_id),
            key=lambda r: (r.fire_at, r.key),
        )

    async def get_history(
        self,
        module_id: str,
        limit: int = HISTORY_LIMIT,
    ) -> list[NotificationHistoryEntry]:
        entries = [e for e in reversed(self._history) if e.module_id == module_id]
        return entries[:limit]

    def mark_delivered(self, key: str) -> ScheduledNotificationRecord:
        """Deliver a pending notification: it leaves the pending set."""
        record = self._records.pop(key)
        self._remember(NotificationHistoryEntry.for_record(record, NotificationEvent.DELIVERED))
        return record

    def _remember(self, entry: NotificationHistoryEntry) -> None:
        self._history.append(entry)
        del self._history[:-HISTORY_LIMIT]
