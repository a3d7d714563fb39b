"""
Tests for the JSON file notification hub.
"""

import asyncio
import os
import pytest
from datetime import date, datetime
from decimal import Decimal
from tenacity import wait_none

from finance_scheduler.config import EngineSettings, NotificationSettings
from finance_scheduler.models.notification import (
    HubModuleSettings,
    NotificationChannel,
    NotificationEvent,
    ScheduledNotificationRecord,
    Section,
)
from finance_scheduler.models.obligation import ObligationKind, RecurringObligation
from finance_scheduler.scheduling import NotificationSyncEngine
from finance_scheduler.services.hub import (
    JsonFileNotificationHub,
    ScheduleRejectedError,
    TransportError,
)
from finance_scheduler.services.hub import json_file
from finance_scheduler.services.storage import InMemoryObligationRepository


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(JsonFileNotificationHub._read_state.retry, "wait", wait_none())
    monkeypatch.setattr(JsonFileNotificationHub._write_state.retry, "wait", wait_none())


@pytest.fixture
def hub_path(tmp_path):
    return tmp_path / "hub" / "notifications.json"


def _record(key="finance:abc", module_id="finance", **overrides) -> ScheduledNotificationRecord:
    fields = dict(
        key=key,
        module_id=module_id,
        source_entity_id="bill-1",
        section=Section.BILLS,
        occurrence_date=date(2024, 3, 15),
        fire_at=datetime(2024, 3, 15, 9, 0),
        channel=NotificationChannel.ALARM,
        title="Rent is due today",
        body="INR 15000.00 due on 15 Mar 2024",
        extras={"kind": "bill", "reminder_id": "on_due"},
    )
    fields.update(overrides)
    return ScheduledNotificationRecord(**fields)


class TestJsonFileHub:
    """Tests for file persistence."""

    def test_initialize_creates_file(self, hub_path):
        """Test that initialize writes an empty document."""
        asyncio.run(JsonFileNotificationHub(hub_path).initialize())
        assert hub_path.exists()

    def test_records_survive_new_instance(self, hub_path):
        """Test that scheduled records are read back by a fresh hub."""
        record = _record()
        asyncio.run(JsonFileNotificationHub(hub_path).schedule(record))
        loaded = asyncio.run(JsonFileNotificationHub(hub_path).list_scheduled("finance"))
        assert loaded == [record]

    def test_list_filters_by_module(self, hub_path):
        async def scenario():
            hub = JsonFileNotificationHub(hub_path)
            await hub.schedule(_record())
            await hub.schedule(_record(key="other:abc", module_id="other"))
            return await hub.list_scheduled("finance")

        assert [r.key for r in asyncio.run(scenario())] == ["finance:abc"]

    def test_cancel(self, hub_path):
        """Test that cancel reports whether the key existed."""
        async def scenario():
            hub = JsonFileNotificationHub(hub_path)
            await hub.schedule(_record())
            return await hub.cancel("finance:abc"), await hub.cancel("finance:abc")

        assert asyncio.run(scenario()) == (True, False)

    def test_disabled_module_rejects_schedule(self, hub_path):
        """Test that a muted module cannot schedule."""
        async def scenario():
            hub = JsonFileNotificationHub(hub_path)
            await hub.set_module_settings("finance", HubModuleSettings(module_id="finance", enabled=False))
            with pytest.raises(ScheduleRejectedError):
                await hub.schedule(_record())
            return await hub.get_module_settings("finance")

        module = asyncio.run(scenario())
        assert module.enabled is False
        assert module.updated_at is not None

    def test_unknown_module_defaults_enabled(self, hub_path):
        module = asyncio.run(JsonFileNotificationHub(hub_path).get_module_settings("finance"))
        assert module.enabled

    def test_corrupt_file_is_transport_error(self, hub_path):
        """Test that an unreadable document is treated as an unreachable hub."""
        hub_path.parent.mkdir(parents=True)
        hub_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(TransportError):
            asyncio.run(JsonFileNotificationHub(hub_path).list_scheduled("finance"))

    def test_invalid_record_is_skipped(self, hub_path):
        """Test that one malformed record does not hide the others."""
        record = _record()
        asyncio.run(JsonFileNotificationHub(hub_path).schedule(record))
        text = hub_path.read_text(encoding="utf-8")
        hub_path.write_text(
            text.replace('"notifications": {', '"notifications": {"broken": {"key": 1},', 1),
            encoding="utf-8",
        )
        loaded = asyncio.run(JsonFileNotificationHub(hub_path).list_scheduled("finance"))
        assert loaded == [record]

    def test_read_error_after_retries(self, tmp_path):
        """Test that a persistent OS error surfaces as TransportError."""
        with pytest.raises(TransportError):
            asyncio.run(JsonFileNotificationHub(tmp_path).list_scheduled("finance"))

    def test_transient_write_error_is_retried(self, hub_path, monkeypatch):
        """Test that a write succeeding on the third attempt is not an error."""
        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append(dst)
            if len(calls) < 3:
                raise OSError("device busy")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", flaky_replace)
        asyncio.run(JsonFileNotificationHub(hub_path).schedule(_record()))

        assert len(calls) == 3
        monkeypatch.setattr(os, "replace", real_replace)
        assert len(asyncio.run(JsonFileNotificationHub(hub_path).list_scheduled("finance"))) == 1

    def test_history_survives_new_instance(self, hub_path):
        """Test that schedule and cancel events are read back newest first."""
        async def scenario():
            hub = JsonFileNotificationHub(hub_path)
            await hub.schedule(_record(extras={"once_key": "bill-1:heads_up:2024-03-15"}))
            await hub.cancel("finance:abc")
            await hub.cancel("finance:abc")
            return await JsonFileNotificationHub(hub_path).get_history("finance")

        history = asyncio.run(scenario())
        assert [e.event for e in history] == [NotificationEvent.CANCELLED, NotificationEvent.SCHEDULED]
        assert all(e.extras["once_key"] == "bill-1:heads_up:2024-03-15" for e in history)

    def test_history_is_trimmed(self, hub_path, monkeypatch):
        """Test that only the newest entries are kept."""
        monkeypatch.setattr(json_file, "HISTORY_LIMIT", 3)

        async def scenario():
            hub = JsonFileNotificationHub(hub_path)
            for i in range(5):
                await hub.schedule(_record(key=f"finance:{i}"))
            return await hub.get_history("finance")

        assert [e.key for e in asyncio.run(scenario())] == ["finance:4", "finance:3", "finance:2"]


class TestEngineWithFileHub:
    """Tests for a full sync against the file hub."""

    def test_resync_after_restart_is_a_no_op(self, hub_path):
        """Test that records read back from disk match freshly built ones."""
        bill = RecurringObligation(
            kind=ObligationKind.BILL,
            name="Rent",
            amount=Decimal("15000"),
            start_date=date(2024, 1, 1),
            due_day=15,
        )
        settings = NotificationSettings(planning_window_days=30)
        now = datetime(2024, 3, 10, 8, 0)

        def run_sync():
            engine = NotificationSyncEngine(
                hub=JsonFileNotificationHub(hub_path),
                bill_repository=InMemoryObligationRepository([bill]),
                engine_settings=EngineSettings(module_id="finance"),
            )
            return asyncio.run(engine.sync_schedules(settings, now))

        first = run_sync()
        second = run_sync()
        assert first.scheduled == 1
        assert second.scheduled == 0
        assert second.cancelled == 0
