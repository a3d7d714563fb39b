"""
Notification Sync Engine

Reconciles what SHOULD be scheduled (derived from obligations and settings)
with what IS scheduled in the notification hub.

Flow of a full sync:
1. Initialize the hub, read what it holds and which once-only reminders
   are used up, then mirror the global switch into its module settings
2. Collect required reminders for every enabled section, including the
   trailing reminders of occurrences that have just passed
3. Apply the pending budget (priority: bills, debts, lending, budgets,
   savings goals, recurring income)
4. Diff against the pending set by notification key
5. Cancel stale items, then create missing ones, under a bounded pool
6. Report a SyncResult

DESIGN DECISION: Per-item hub errors never abort a sync. They are counted,
logged, and the item stays required so the next sync retries it. Only
TransportError (hub unreachable) propagates, after in-flight calls finish.

DESIGN DECISION: Operations on one engine never overlap. Each runs as its own
task, holding the engine lock, awaited through asyncio.shield: a caller that
stops waiting does not abort hub calls already in flight.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog

from finance_scheduler.audit import AuditLogger, create_correlation_id
from finance_scheduler.config import EngineSettings, NotificationSettings, get_settings
from finance_scheduler.models.notification import (
    ONCE_CONSUMING_EVENTS,
    SECTION_BY_KIND,
    SECTION_PRIORITY,
    NotificationChannel,
    NotificationEvent,
    ScheduledNotificationRecord,
    Section,
    SyncResult,
    make_notification_key,
    make_once_key,
)
from finance_scheduler.models.obligation import (
    ChannelPreference,
    ObligationKind,
    RecurringObligation,
    ReminderCondition,
    ReminderOffset,
)
from finance_scheduler.scheduling.messages import render_message
from finance_scheduler.scheduling.projector import OccurrenceProjector
from finance_scheduler.services.hub import HubError, NotificationHubInterface, TransportError
from finance_scheduler.services.storage import ObligationRepositoryInterface


logger = structlog.get_logger(__name__)

T = TypeVar("T")

SECTION_KINDS: dict[Section, set[ObligationKind]] = {
    Section.BILLS: {ObligationKind.BILL, ObligationKind.SUBSCRIPTION},
    Section.DEBTS: {ObligationKind.DEBT},
    Section.LENDING: {ObligationKind.LENDING},
    Section.BUDGETS: {ObligationKind.BUDGET},
    Section.SAVINGS_GOALS: {ObligationKind.SAVINGS_GOAL},
    Section.RECURRING_INCOME: {ObligationKind.RECURRING_INCOME},
}


def section_enabled(settings: NotificationSettings, section: Section) -> bool:
    """Global switch AND the section's own switch."""
    return settings.notifications_enabled and getattr(settings, f"{section.value}_enabled")


class NotificationSyncEngine:
    """
    Keeps the hub's finance notifications aligned with the obligations.

    The settings value is passed into every call; the engine holds no
    user-facing configuration of its own.
    """

    def __init__(
        self,
        hub: NotificationHubInterface,
        bill_repository: Optional[ObligationRepositoryInterface] = None,
        debt_repository: Optional[ObligationRepositoryInterface] = None,
        income_repository: Optional[ObligationRepositoryInterface] = None,
        budget_repository: Optional[ObligationRepositoryInterface] = None,
        savings_goal_repository: Optional[ObligationRepositoryInterface] = None,
        projector: Optional[OccurrenceProjector] = None,
        audit_logger: Optional[AuditLogger] = None,
        engine_settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._hub = hub
        self._engine_settings = engine_settings or get_settings().engine
        self._projector = projector or OccurrenceProjector(
            self._engine_settings.max_occurrences_per_obligation
        )
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock or datetime.now

        # Debts and lending share one repository, split by kind.
        self._repositories: dict[Section, Optional[ObligationRepositoryInterface]] = {
            Section.BILLS: bill_repository,
            Section.DEBTS: debt_repository,
            Section.LENDING: debt_repository,
            Section.BUDGETS: budget_repository,
            Section.SAVINGS_GOALS: savings_goal_repository,
            Section.RECURRING_INCOME: income_repository,
        }

        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def module_id(self) -> str:
        return self._engine_settings.module_id

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def sync_schedules(
        self,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Full reconciliation of every section.

        Raises:
            TransportError: The hub is unreachable. Raised before any
                mutation when initialize/list fails, or after in-flight
                calls finish when it happens mid-batch.
        """
        return await self._exclusive(lambda: self._sync_all(settings, now or self._clock()))

    async def sync_obligation(
        self,
        obligation: RecurringObligation,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Reconcile one obligation's notifications, leaving the rest alone."""
        return await self._exclusive(
            lambda: self._sync_entity(obligation, settings, now or self._clock())
        )

    async def sync_bill(
        self,
        obligation: RecurringObligation,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        self._require_kind(obligation, SECTION_KINDS[Section.BILLS])
        return await self.sync_obligation(obligation, settings, now)

    async def sync_debt(
        self,
        obligation: RecurringObligation,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        self._require_kind(obligation, {ObligationKind.DEBT, ObligationKind.LENDING})
        return await self.sync_obligation(obligation, settings, now)

    async def sync_recurring_income(
        self,
        obligation: RecurringObligation,
        settings: NotificationSettings,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        self._require_kind(obligation, {ObligationKind.RECURRING_INCOME})
        return await self.sync_obligation(obligation, settings, now)

    async def clear_scheduled_notifications(self) -> int:
        """Cancel every notification the module owns. Returns the count cancelled."""
        return await self._exclusive(self._clear_all)

    async def cancel_bill_notifications(self, obligation_id: UUID) -> int:
        return await self._exclusive(
            lambda: self._cancel_entity(obligation_id, {Section.BILLS})
        )

    async def cancel_debt_notifications(self, obligation_id: UUID) -> int:
        return await self._exclusive(
            lambda: self._cancel_entity(obligation_id, {Section.DEBTS, Section.LENDING})
        )

    async def cancel_recurring_income_notifications(self, obligation_id: UUID) -> int:
        return await self._exclusive(
            lambda: self._cancel_entity(obligation_id, {Section.RECURRING_INCOME})
        )

    async def cancel_obligation_notifications(
        self,
        obligation_id: UUID,
        kind: ObligationKind,
    ) -> int:
        """Cancel by obligation kind; covers budgets and savings goals too."""
        section = SECTION_BY_KIND[kind]
        return await self._exclusive(lambda: self._cancel_entity(obligation_id, {section}))

    # =========================================================================
    # SINGLE FLIGHT
    # =========================================================================

    async def _exclusive(self, operation: Callable[[], Awaitable[T]]) -> T:
        async def run() -> T:
            async with self._lock:
                return await operation()

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_task_failure)
        return await asyncio.shield(task)

    @staticmethod
    def _require_kind(obligation: RecurringObligation, kinds: set[ObligationKind]) -> None:
        if obligation.kind not in kinds:
            raise ValueError(
                f"Obligation {obligation.id} is a {obligation.kind.value}, "
                f"expected one of {sorted(k.value for k in kinds)}"
            )

    # =========================================================================
    # FULL SYNC
    # =========================================================================

    async def _sync_all(self, settings: NotificationSettings, now: datetime) -> SyncResult:
        correlation_id = create_correlation_id()
        await self._audit_logger.log_sync_started(self.module_id, "full", correlation_id)

        try:
            # Every read happens before the first hub write.
            await self._hub.initialize()
            current = await self._hub.list_scheduled(self.module_id)
            consumed = await self._consumed_once_keys(current)
            await self._mirror_module_settings(settings)

            required: list[ScheduledNotificationRecord] = []
            for section in SECTION_PRIORITY:
                required.extend(
                    await self._collect_section(section, settings, now, consumed)
                )

            kept, dropped = self._apply_budget(required, self._engine_settings.max_pending_notifications)
            if dropped:
                await self._audit_logger.log_pending_budget_exceeded(
                    self.module_id,
                    len(required),
                    self._engine_settings.max_pending_notifications,
                    correlation_id,
                )

            result = await self._reconcile(kept, current, correlation_id)
        except TransportError as e:
            await self._audit_logger.log_sync_failed(self.module_id, str(e), correlation_id)
            raise

        result.dropped = dropped
        await self._audit_logger.log_sync_completed(
            self.module_id, result.to_log_dict(), correlation_id
        )
        return result

    async def _mirror_module_settings(self, settings: NotificationSettings) -> None:
        hub_settings = await self._hub.get_module_settings(self.module_id)
        if hub_settings.enabled != settings.notifications_enabled:
            await self._hub.set_module_settings(
                self.module_id,
                hub_settings.model_copy(update={"enabled": settings.notifications_enabled}),
            )

    async def _consumed_once_keys(
        self,
        current: Iterable[ScheduledNotificationRecord],
    ) -> frozenset[str]:
        """
        Once-only reminders that must not be scheduled again.

        The latest history event of a once key decides. A reminder still
        pending is not used up, and one the engine cancelled may come back.
        """
        pending = {r.extras["once_key"] for r in current if "once_key" in r.extras}
        latest: dict[str, NotificationEvent] = {}
        for entry in await self._hub.get_history(self.module_id):
            once_key = entry.extras.get("once_key")
            if once_key and once_key not in latest:
                latest[once_key] = entry.event
        return frozenset(
            once_key for once_key, event in latest.items()
            if event in ONCE_CONSUMING_EVENTS and once_key not in pending
        )

    async def _collect_section(
        self,
        section: Section,
        settings: NotificationSettings,
        now: datetime,
        consumed_once_keys: frozenset[str] = frozenset(),
    ) -> list[ScheduledNotificationRecord]:
        repository = self._repositories[section]
        if repository is None or not section_enabled(settings, section):
            return []

        records: list[ScheduledNotificationRecord] = []
        for obligation in await repository.list_active(SECTION_KINDS[section]):
            records.extend(
                self.build_records(obligation, section, settings, now, consumed_once_keys)
            )
        return records

    @staticmethod
    def _apply_budget(
        required: list[ScheduledNotificationRecord],
        budget: int,
    ) -> tuple[list[ScheduledNotificationRecord], int]:
        """Keep the highest-priority, soonest items that fit the budget."""
        if len(required) <= budget:
            return required, 0
        rank = {section: i for i, section in enumerate(SECTION_PRIORITY)}
        ordered = sorted(required, key=lambda r: (rank[r.section], r.fire_at, r.key))
        return ordered[:budget], len(required) - budget

    # =========================================================================
    # REQUIRED SET
    # =========================================================================

    def build_records(
        self,
        obligation: RecurringObligation,
        section: Section,
        settings: NotificationSettings,
        now: datetime,
        consumed_once_keys: frozenset[str] = frozenset(),
    ) -> list[ScheduledNotificationRecord]:
        """
        Expand one obligation into the notification records it requires.

        Occurrences that passed recently are expanded too, so their after-due
        and late reminders stay scheduled until they fire.

        Skipped: reminders past the planning window, reminders older than the
        late grace period, reminders whose condition does not hold, and
        once-only reminders listed in `consumed_once_keys`.
        Reminders already late but within grace fire after a short delay.
        """
        if not obligation.is_active or not obligation.reminder_enabled:
            return []

        window = settings.planning_window_days
        grace = timedelta(hours=self._engine_settings.late_reminder_grace_hours)
        horizon_end = datetime.combine(now.date() + timedelta(days=window), time.max)
        grace_floor = now - grace
        catch_up = now + timedelta(minutes=self._engine_settings.catch_up_delay_minutes)
        default_hour = settings.default_reminder_hour

        projected_occurrences = (
            self._projector.project_trailing(obligation, now, grace)
            + self._projector.project(obligation, now, window)
        )

        records: dict[str, ScheduledNotificationRecord] = {}
        for projected in projected_occurrences:
            occurrence = projected.occurrence_date
            for offset in projected.reminder_offsets:
                fire_at = offset.fire_time(occurrence, default_hour)
                if fire_at > horizon_end or fire_at < grace_floor:
                    continue
                once_key = None
                if offset.condition == ReminderCondition.ONCE:
                    once_key = make_once_key(str(obligation.id), offset.id, occurrence)
                    if once_key in consumed_once_keys:
                        continue
                delivery = fire_at if fire_at > now else catch_up
                if not self._condition_holds(obligation, section, offset, occurrence, delivery):
                    continue

                title, body = render_message(
                    section, obligation, occurrence, delivery.date(), offset
                )
                key = make_notification_key(
                    self.module_id,
                    str(obligation.id),
                    occurrence,
                    offset.fingerprint(default_hour),
                )
                extras = {
                    "kind": obligation.kind.value,
                    "reminder_id": offset.id,
                    "condition": offset.condition.value,
                }
                if once_key is not None:
                    extras["once_key"] = once_key
                records[key] = ScheduledNotificationRecord(
                    key=key,
                    module_id=self.module_id,
                    source_entity_id=str(obligation.id),
                    section=section,
                    occurrence_date=occurrence,
                    fire_at=delivery,
                    channel=self._channel_for(section, offset, occurrence, delivery, settings),
                    title=title,
                    body=body,
                    extras=extras,
                )
        return list(records.values())

    @staticmethod
    def _condition_holds(
        obligation: RecurringObligation,
        section: Section,
        offset: ReminderOffset,
        occurrence: date,
        delivery: datetime,
    ) -> bool:
        if offset.condition in (ReminderCondition.ALWAYS, ReminderCondition.ONCE):
            return True
        if section == Section.RECURRING_INCOME:
            # Income is never "unpaid" or "overdue" from the user's side.
            return True
        if offset.condition == ReminderCondition.IF_UNPAID:
            return not obligation.is_paid_for(occurrence)
        return delivery.date() > occurrence

    @staticmethod
    def _channel_for(
        section: Section,
        offset: ReminderOffset,
        occurrence: date,
        delivery: datetime,
        settings: NotificationSettings,
    ) -> NotificationChannel:
        if offset.channel_preference == ChannelPreference.REGULAR:
            return NotificationChannel.REGULAR
        if offset.channel_preference == ChannelPreference.ALARM:
            return NotificationChannel.ALARM
        delivery_day = delivery.date()
        if delivery_day > occurrence and settings.overdue_alerts_use_alarm:
            return NotificationChannel.ALARM
        if delivery_day == occurrence and settings.due_today_alerts_use_alarm:
            return NotificationChannel.ALARM
        return NotificationChannel.REGULAR

    # =========================================================================
    # DIFF + DISPATCH
    # =========================================================================

    async def _reconcile(
        self,
        required: Iterable[ScheduledNotificationRecord],
        current: Iterable[ScheduledNotificationRecord],
        correlation_id: Optional[UUID],
    ) -> SyncResult:
        required_by_key = {r.key: r for r in required}
        current_by_key = {r.key: r for r in current}

        # A key on both sides with different content is replaced.
        to_cancel = [
            record for key, record in current_by_key.items()
            if key not in required_by_key
            or required_by_key[key].content_signature != record.content_signature
        ]
        to_create = [
            record for key, record in required_by_key.items()
            if key not in current_by_key
            or current_by_key[key].content_signature != record.content_signature
        ]

        result = SyncResult()

        cancelled, cancel_failures = await self._dispatch(
            "cancel", to_cancel, lambda r: self._hub.cancel(r.key), correlation_id
        )
        created, create_failures = await self._dispatch(
            "schedule", to_create, self._hub.schedule, correlation_id
        )

        result.cancelled = len(cancelled)
        result.scheduled = len(created)
        result.failed = cancel_failures + create_failures
        result.cancelled_by_section = _count_by_section(cancelled)
        result.scheduled_by_section = _count_by_section(created)

        logger.info(
            "sync_reconciled",
            module_id=self.module_id,
            required=len(required_by_key),
            current=len(current_by_key),
            **result.to_log_dict(),
        )
        return result

    async def _dispatch(
        self,
        operation: str,
        records: list[ScheduledNotificationRecord],
        call: Callable[[ScheduledNotificationRecord], Awaitable[object]],
        correlation_id: Optional[UUID],
    ) -> tuple[list[ScheduledNotificationRecord], int]:
        """
        Run one hub call per record under a bounded pool.

        Returns:
            (records that succeeded, number of per-item failures)

        Raises:
            TransportError: after every in-flight call has finished
        """
        if not records:
            return [], 0

        semaphore = asyncio.Semaphore(self._engine_settings.max_concurrent_hub_calls)

        async def run_one(record: ScheduledNotificationRecord) -> object:
            async with semaphore:
                return await call(record)

        outcomes = await asyncio.gather(
            *(run_one(record) for record in records),
            return_exceptions=True,
        )

        succeeded: list[ScheduledNotificationRecord] = []
        failures = 0
        fatal: Optional[BaseException] = None

        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, TransportError) or (
                isinstance(outcome, BaseException) and not isinstance(outcome, HubError)
            ):
                fatal = fatal or outcome
                continue
            if isinstance(outcome, HubError):
                failures += 1
                logger.warning(
                    "hub_item_failed",
                    operation=operation,
                    key=record.key,
                    error=str(outcome),
                )
                await self._audit_logger.log_hub_item_failed(
                    self.module_id, record.key, operation, str(outcome), correlation_id
                )
                continue
            if outcome is False:
                # Cancel of a key the hub no longer has.
                continue
            succeeded.append(record)

        if fatal is not None:
            raise fatal
        return succeeded, failures

    # =========================================================================
    # SCOPED OPERATIONS
    # =========================================================================

    async def _sync_entity(
        self,
        obligation: RecurringObligation,
        settings: NotificationSettings,
        now: datetime,
    ) -> SyncResult:
        section = SECTION_BY_KIND[obligation.kind]
        entity_id = str(obligation.id)

        await self._hub.initialize()
        current = await self._hub.list_scheduled(self.module_id)
        mine = [r for r in current if r.source_entity_id == entity_id]

        required: list[ScheduledNotificationRecord] = []
        if section_enabled(settings, section):
            consumed = await self._consumed_once_keys(mine)
            required = self.build_records(obligation, section, settings, now, consumed)

        # Other entities keep their slots; this one gets what is left.
        room = max(0, self._engine_settings.max_pending_notifications - (len(current) - len(mine)))
        kept, dropped = self._apply_budget(required, room)

        result = await self._reconcile(kept, mine, None)
        result.dropped = dropped
        return result

    async def _clear_all(self) -> int:
        current = await self._hub.list_scheduled(self.module_id)
        cancelled, _ = await self._dispatch(
            "cancel", current, lambda r: self._hub.cancel(r.key), None
        )
        await self._audit_logger.log_module_cleared(self.module_id, len(cancelled))
        return len(cancelled)

    async def _cancel_entity(self, obligation_id: UUID, sections: set[Section]) -> int:
        entity_id = str(obligation_id)
        current = await self._hub.list_scheduled(self.module_id)
        targets = [
            r for r in current
            if r.source_entity_id == entity_id and r.section in sections
        ]
        cancelled, _ = await self._dispatch(
            "cancel", targets, lambda r: self._hub.cancel(r.key), None
        )
        if targets:
            await self._audit_logger.log_entity_cancelled(
                self.module_id,
                entity_id,
                ",".join(sorted(s.value for s in sections)),
                len(cancelled),
            )
        return len(cancelled)


def _log_task_failure(task: asyncio.Task) -> None:
    """Report a failed operation even when its caller stopped waiting."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "engine_operation_failed",
            error=str(error),
            error_type=type(error).__name__,
        )


def _count_by_section(records: Iterable[ScheduledNotificationRecord]) -> dict[Section, int]:
    counts: dict[Section, int] = {}
    for record in records:
        counts[record.section] = counts.get(record.section, 0) + 1
    return counts
