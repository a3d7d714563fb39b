"""
Configuration Management for the Finance Reminder Scheduler

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Two kinds of configuration live here.
1. NotificationSettings - the user-facing switches (which sections notify,
   planning window, reminder hour). The engine receives this as an explicit,
   immutable value on every call and never reads it from global state.
2. EngineSettings / AppSettings - deployment knobs (concurrency, grace periods,
   log level) loaded once from the environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_PLANNING_WINDOW_DAYS = 7
MAX_PLANNING_WINDOW_DAYS = 365


class NotificationSettings(BaseSettings):
    """
    Finance-only notification controls.

    The hub still owns final delivery behavior (sound, vibration, etc).
    This value controls which sections can produce notifications and how far
    ahead they are planned.
    """

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_NOTIFY_",
        extra="ignore",
        frozen=True,
    )

    notifications_enabled: bool = Field(
        default=True,
        description="Global switch for all finance notifications"
    )
    sync_on_startup: bool = Field(
        default=True,
        description="Run a maintenance sync when the app starts"
    )

    # Section switches
    bills_enabled: bool = True
    debts_enabled: bool = True
    lending_enabled: bool = True
    budgets_enabled: bool = False
    savings_goals_enabled: bool = True
    recurring_income_enabled: bool = True

    # Alarm channel promotion
    overdue_alerts_use_alarm: bool = Field(
        default=True,
        description="Deliver overdue reminders on the alarm channel"
    )
    due_today_alerts_use_alarm: bool = Field(
        default=True,
        description="Deliver due-today reminders on the alarm channel"
    )

    planning_window_days: int = Field(
        default=180,
        description="How many days ahead occurrences are scheduled"
    )
    default_reminder_hour: int = Field(
        default=9,
        description="Hour of day used when a reminder has no explicit hour"
    )

    @field_validator("planning_window_days")
    @classmethod
    def clamp_planning_window(cls, v: int) -> int:
        """Out-of-range windows are clamped rather than rejected."""
        return max(MIN_PLANNING_WINDOW_DAYS, min(MAX_PLANNING_WINDOW_DAYS, v))

    @field_validator("default_reminder_hour")
    @classmethod
    def clamp_reminder_hour(cls, v: int) -> int:
        return max(0, min(23, v))

    def copy_with(self, **changes) -> "NotificationSettings":
        """Return a new settings value with the given fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return NotificationSettings(**data)

    def to_json_string(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json_string(cls, raw: Optional[str]) -> "NotificationSettings":
        """
        Parse a stored settings blob.

        Corrupt or non-object JSON falls back to the defaults so a bad
        record can never disable reminders permanently.
        """
        if not raw:
            return cls()
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return cls()


class EngineSettings(BaseSettings):
    """Sync engine tuning."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore"
    )

    module_id: str = Field(
        default="finance",
        min_length=1,
        description="Hub module that owns every finance notification"
    )
    max_concurrent_hub_calls: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Upper bound on in-flight hub create/cancel calls"
    )
    late_reminder_grace_hours: int = Field(
        default=24,
        ge=0,
        description="Reminders missed by less than this still fire"
    )
    catch_up_delay_minutes: int = Field(
        default=2,
        ge=0,
        description="Delay before a late reminder fires"
    )
    max_pending_notifications: int = Field(
        default=480,
        ge=1,
        description="Most notifications the module may keep pending at once"
    )
    max_occurrences_per_obligation: int = Field(
        default=200,
        ge=1,
        description="Cap on projected occurrences for multi-occurrence kinds"
    )
    hub_file_path: str = Field(
        default="data/scheduled_notifications.json",
        description="Location of the JSON file used by the file-backed hub"
    )


class AppSettings(BaseSettings):
    """Process-wide settings, read from the environment and a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("notifications", "engine", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValidationError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
