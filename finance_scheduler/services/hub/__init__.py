"""
Notification Hub Package

The external store of scheduled notifications, behind an abstract interface.
"""

from finance_scheduler.services.hub.interface import (
    HISTORY_LIMIT,
    HubError,
    NotificationHubInterface,
    ScheduleRejectedError,
    TransportError,
)
from finance_scheduler.services.hub.memory import InMemoryNotificationHub
from finance_scheduler.services.hub.json_file import JsonFileNotificationHub

__all__ = [
    # Interface
    "NotificationHubInterface",
    "HISTORY_LIMIT",
    # Exceptions
    "HubError",
    "ScheduleRejectedError",
    "TransportError",
    # Implementations
    "InMemoryNotificationHub",
    "JsonFileNotificationHub",
]
