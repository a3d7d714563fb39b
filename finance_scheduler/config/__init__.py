"""Configuration package."""

from finance_scheduler.config.settings import (
    AppSettings,
    EngineSettings,
    NotificationSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "EngineSettings",
    "NotificationSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
