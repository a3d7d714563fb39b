"""Services package."""

from finance_scheduler.services.hub import (
    HubError,
    InMemoryNotificationHub,
    JsonFileNotificationHub,
    NotificationHubInterface,
    ScheduleRejectedError,
    TransportError,
)
from finance_scheduler.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryObligationRepository,
    InMemorySettingsStore,
    NotFoundError,
    ObligationRepositoryInterface,
    SettingsStoreInterface,
    StorageError,
)

__all__ = [
    # Hub
    "HubError",
    "InMemoryNotificationHub",
    "JsonFileNotificationHub",
    "NotificationHubInterface",
    "ScheduleRejectedError",
    "TransportError",
    # Storage
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryObligationRepository",
    "InMemorySettingsStore",
    "NotFoundError",
    "ObligationRepositoryInterface",
    "SettingsStoreInterface",
    "StorageError",
]
