"""
In-Memory Storage

Dict-backed implementations of the storage interfaces. Used by tests and
by embedders that keep obligations in memory and push changes in.
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from finance_scheduler.config.settings import NotificationSettings
from finance_scheduler.models.audit import AuditEvent
from finance_scheduler.models.obligation import ObligationKind, RecurringObligation
from finance_scheduler.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    ObligationRepositoryInterface,
    SettingsStoreInterface,
)


logger = structlog.get_logger(__name__)


class InMemoryObligationRepository(ObligationRepositoryInterface):
    """Obligations keyed by id, returned in insertion order."""

    def __init__(self, obligations: Optional[list[RecurringObligation]] = None):
        self._items: dict[UUID, RecurringObligation] = {}
        for obligation in obligations or []:
            self._items[obligation.id] = obligation

    async def list_active(
        self,
        kinds: Optional[set[ObligationKind]] = None,
    ) -> list[RecurringObligation]:
        return [
            item for item in self._items.values()
            if item.is_active and (kinds is None or item.kind in kinds)
        ]

    async def get_by_id(self, obligation_id: UUID) -> Optional[RecurringObligation]:
        return self._items.get(obligation_id)

    async def save(self, obligation: RecurringObligation) -> None:
        self._items[obligation.id] = obligation

    async def delete(self, obligation_id: UUID) -> RecurringObligation:
        try:
            return self._items.pop(obligation_id)
        except KeyError:
            raise NotFoundError(f"Obligation {obligation_id} not found") from None


class InMemorySettingsStore(SettingsStoreInterface):
    """
    Keeps settings as the JSON text a key-value store would hold.

    Undecodable text loads as defaults.
    """

    def __init__(self, raw: Optional[str] = None):
        self._raw = raw

    @property
    def raw(self) -> Optional[str]:
        return self._raw

    async def load(self) -> NotificationSettings:
        return NotificationSettings.from_json_string(self._raw)

    async def save(self, settings: NotificationSettings) -> None:
        self._raw = settings.to_json_string()
        logger.debug("notification_settings_saved")


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only event list."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
