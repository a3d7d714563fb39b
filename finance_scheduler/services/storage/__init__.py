"""
Storage Services Package

Abstract interfaces for the data the scheduler reads (obligations, settings)
and writes (audit events), plus in-memory implementations.
"""

from finance_scheduler.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    ObligationRepositoryInterface,
    SettingsStoreInterface,
    StorageError,
)
from finance_scheduler.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryObligationRepository,
    InMemorySettingsStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ObligationRepositoryInterface",
    "SettingsStoreInterface",
    # Exceptions
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryObligationRepository",
    "InMemorySettingsStore",
]
