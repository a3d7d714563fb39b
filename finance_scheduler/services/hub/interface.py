"""
Notification Hub Interface

DESIGN DECISION: The hub is an external durable store of scheduled
notifications. It owns delivery; the scheduler only decides what should be
in it. Keeping it behind an abstract interface lets us:
1. Use an in-memory hub in tests
2. Persist to a JSON file for local runs
3. Plug in a platform notification service without touching the engine
"""

from abc import ABC, abstractmethod

from finance_scheduler.models.notification import (
    HubModuleSettings,
    NotificationHistoryEntry,
    ScheduledNotificationRecord,
)


# Most history entries a hub keeps per store.
HISTORY_LIMIT = 1200


class NotificationHubInterface(ABC):
    """Abstract interface for the notification hub."""

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the hub for use. Safe to call repeatedly.

        Raises:
            TransportError: If the hub is unreachable
        """
        pass

    @abstractmethod
    async def get_module_settings(self, module_id: str) -> HubModuleSettings:
        """
        Read a module's hub-side settings.

        Returns:
            Stored settings, or enabled defaults for an unknown module
        """
        pass

    @abstractmethod
    async def set_module_settings(
        self,
        module_id: str,
        settings: HubModuleSettings,
    ) -> None:
        """Replace a module's hub-side settings."""
        pass

    @abstractmethod
    async def schedule(self, record: ScheduledNotificationRecord) -> None:
        """
        Store a notification for delivery.

        Scheduling a key that already exists replaces it.

        Raises:
            ScheduleRejectedError: The hub refused this one record
            TransportError: If the hub is unreachable
        """
        pass

    @abstractmethod
    async def cancel(self, key: str) -> bool:
        """
        Remove a scheduled notification.

        Returns:
            True if something was removed, False for an unknown key

        Raises:
            TransportError: If the hub is unreachable
        """
        pass

    @abstractmethod
    async def list_scheduled(self, module_id: str) -> list[ScheduledNotificationRecord]:
        """
        List every pending notification owned by a module.

        Raises:
            TransportError: If the hub is unreachable
        """
        pass

    @abstractmethod
    async def get_history(
        self,
        module_id: str,
        limit: int = HISTORY_LIMIT,
    ) -> list[NotificationHistoryEntry]:
        """
        Read a module's notification lifecycle events.

        Args:
            module_id: Module whose events to return
            limit: Maximum number of entries

        Returns:
            Entries newest first

        Raises:
            TransportError: If the hub is unreachable
        """
        pass


class HubError(Exception):
    """Base exception for hub operations. Per-item errors are retried next sync."""
    pass


class ScheduleRejectedError(HubError):
    """The hub refused to store a record."""
    pass


class TransportError(HubError):
    """The hub could not be reached at all."""
    pass
