"""
Main Orchestrator for the Finance Reminder Scheduler

Maps the app's triggers onto the sync engine:
1. App startup -> full sync (only when sync_on_startup is set)
2. Settings changed -> persist, then full sync with the new value
3. Obligation saved -> reconcile that one obligation
4. Obligation deleted -> cancel its notifications
5. Explicit user action -> full sync or clear

DESIGN DECISION: The orchestrator owns loading settings. The engine never
reads them from global state; it is handed the value on every call.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from finance_scheduler.audit import AuditLogger, configure_logging
from finance_scheduler.config import NotificationSettings, get_settings
from finance_scheduler.models.notification import SyncResult
from finance_scheduler.models.obligation import ObligationKind, RecurringObligation
from finance_scheduler.scheduling import NotificationSyncEngine, OccurrenceProjector
from finance_scheduler.services.hub import (
    InMemoryNotificationHub,
    JsonFileNotificationHub,
    NotificationHubInterface,
)
from finance_scheduler.services.storage import (
    AuditStorageInterface,
    InMemoryObligationRepository,
    InMemorySettingsStore,
    ObligationRepositoryInterface,
    SettingsStoreInterface,
)


logger = structlog.get_logger(__name__)


class FinanceNotificationService:
    """Trigger layer in front of the NotificationSyncEngine."""

    def __init__(
        self,
        engine: NotificationSyncEngine,
        settings_store: SettingsStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._engine = engine
        self._settings_store = settings_store
        self._audit_logger = audit_logger

    @property
    def engine(self) -> NotificationSyncEngine:
        return self._engine

    async def on_app_startup(self, now: Optional[datetime] = None) -> Optional[SyncResult]:
        """
        Maintenance sync at startup.

        Returns:
            The sync result, or None when sync_on_startup is off
        """
        settings = await self._settings_store.load()
        if not settings.sync_on_startup:
            logger.info("startup_sync_skipped")
            return None
        return await self._engine.sync_schedules(settings, now)

    async def on_settings_changed(
        self,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Persist new settings and resync everything against them."""
        previous = await self._settings_store.load()
        await self._settings_store.save(settings)

        changes = {
            name: {"from": getattr(previous, name), "to": value}
            for name, value in settings.model_dump().items()
            if getattr(previous, name) != value
        }
        if self._audit_logger and changes:
            await self._audit_logger.log_settings_changed(self._engine.module_id, changes)

        return await self._engine.sync_schedules(settings, now)

    async def on_obligation_saved(
        self,
        obligation: RecurringObligation,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        settings = await self._settings_store.load()
        return await self._engine.sync_obligation(obligation, settings, now)

    async def on_obligation_deleted(self, obligation_id: UUID, kind: ObligationKind) -> int:
        if kind in (ObligationKind.BILL, ObligationKind.SUBSCRIPTION):
            return await self._engine.cancel_bill_notifications(obligation_id)
        if kind in (ObligationKind.DEBT, ObligationKind.LENDING):
            return await self._engine.cancel_debt_notifications(obligation_id)
        if kind == ObligationKind.RECURRING_INCOME:
            return await self._engine.cancel_recurring_income_notifications(obligation_id)
        return await self._engine.cancel_obligation_notifications(obligation_id, kind)

    async def resync(self, now: Optional[datetime] = None) -> SyncResult:
        """User asked for a resync."""
        settings = await self._settings_store.load()
        return await self._engine.sync_schedules(settings, now)

    async def clear(self) -> int:
        """User asked to drop every scheduled finance reminder."""
        return await self._engine.clear_scheduled_notifications()


def create_app_components(
    bill_repository: Optional[ObligationRepositoryInterface] = None,
    debt_repository: Optional[ObligationRepositoryInterface] = None,
    income_repository: Optional[ObligationRepositoryInterface] = None,
    budget_repository: Optional[ObligationRepositoryInterface] = None,
    savings_goal_repository: Optional[ObligationRepositoryInterface] = None,
    settings_store: Optional[SettingsStoreInterface] = None,
    hub: Optional[NotificationHubInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    use_file_hub: bool = False,
) -> FinanceNotificationService:
    """
    Factory function to create all application components.

    Args:
        *_repository: Obligation sources; in-memory when omitted
        settings_store: Notification settings persistence
        hub: Notification hub; overrides use_file_hub
        audit_storage: Where audit events are persisted (local log only if None)
        use_file_hub: Persist notifications to the configured JSON file

    Returns:
        A ready-to-use FinanceNotificationService
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    if hub is None:
        hub = JsonFileNotificationHub() if use_file_hub else InMemoryNotificationHub()

    audit_logger = AuditLogger(audit_storage)
    engine_settings = settings.engine

    engine = NotificationSyncEngine(
        hub=hub,
        bill_repository=bill_repository or InMemoryObligationRepository(),
        debt_repository=debt_repository or InMemoryObligationRepository(),
        income_repository=income_repository or InMemoryObligationRepository(),
        budget_repository=budget_repository or InMemoryObligationRepository(),
        savings_goal_repository=savings_goal_repository or InMemoryObligationRepository(),
        projector=OccurrenceProjector(engine_settings.max_occurrences_per_obligation),
        audit_logger=audit_logger,
        engine_settings=engine_settings,
    )

    return FinanceNotificationService(
        engine=engine,
        settings_store=settings_store or InMemorySettingsStore(),
        audit_logger=audit_logger,
    )
