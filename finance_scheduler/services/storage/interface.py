"""
Abstract Storage Interface

DESIGN DECISION: The scheduler never talks to a database directly. It reads
obligations and settings through these interfaces, so that:
1. The owning features keep their own persistence
2. In-memory storage can be used for testing
3. Business logic stays decoupled from storage implementation

The interfaces are intentionally small - just the reads the scheduler needs.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finance_scheduler.config.settings import NotificationSettings
from finance_scheduler.models.audit import AuditEvent
from finance_scheduler.models.obligation import ObligationKind, RecurringObligation


class ObligationRepositoryInterface(ABC):
    """
    Read access to the obligations of one or more kinds.

    A debt repository serves both DEBT and LENDING obligations; the caller
    filters by kind.
    """

    @abstractmethod
    async def list_active(
        self,
        kinds: Optional[set[ObligationKind]] = None,
    ) -> list[RecurringObligation]:
        """
        List active obligations.

        Args:
            kinds: Only return these kinds (all kinds when None)

        Returns:
            Active obligations, in a stable order

        Raises:
            StorageError: If the backing store cannot be read
        """
        pass

    @abstractmethod
    async def get_by_id(self, obligation_id: UUID) -> Optional[RecurringObligation]:
        """
        Retrieve an obligation by its ID.

        Returns:
            The obligation if found, None otherwise
        """
        pass


class SettingsStoreInterface(ABC):
    """Persistence for the user's notification settings."""

    @abstractmethod
    async def load(self) -> NotificationSettings:
        """
        Load the current settings.

        Returns:
            Stored settings, or defaults when nothing (or garbage) is stored
        """
        pass

    @abstractmethod
    async def save(self, settings: NotificationSettings) -> None:
        """
        Persist settings.

        Raises:
            StorageError: If save fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one sync).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass
