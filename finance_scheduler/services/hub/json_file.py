"""
JSON File Notification Hub

Persists scheduled notifications to a single JSON document so that a local
run survives restarts.

File layout:
    {
        "modules": {"finance": {"module_id": "finance", "enabled": true, ...}},
        "notifications": {"<key>": {...record...}},
        "history": [{...entry...}, ...]
    }

History is append-only, oldest first, trimmed to the newest HISTORY_LIMIT
entries.

DESIGN DECISION: Every operation is read-modify-write of the whole file,
serialized by an asyncio.Lock and written atomically (temp file + rename).
Transient OS errors are retried with tenacity; what still fails surfaces as
TransportError so the engine treats it like an unreachable hub.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from finance_scheduler.config import get_settings
from finance_scheduler.models.notification import (
    HubModuleSettings,
    NotificationEvent,
    NotificationHistoryEntry,
    ScheduledNotificationRecord,
)
from finance_scheduler.services.hub.interface import (
    HISTORY_LIMIT,
    NotificationHubInterface,
    ScheduleRejectedError,
    TransportError,
)


logger = structlog.get_logger(__name__)


class JsonFileNotificationHub(NotificationHubInterface):
    """File-backed hub."""

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path or get_settings().engine.hub_file_path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # -------------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_state(self) -> dict[str, Any]:
        if not self._path.exists():
            return {"modules": {}, "notifications": {}, "history": []}
        with self._path.open("r", encoding="utf-8") as fh:
            text = fh.read()
        if not text.strip():
            return {"modules": {}, "notifications": {}, "history": []}
        state = json.loads(text)
        state.setdefault("modules", {})
        state.setdefault("notifications", {})
        state.setdefault("history", [])
        return state

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write_state(self, state: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(state, fh, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)

    def _load(self) -> dict[str, Any]:
        try:
            return self._read_state()
        except OSError as e:
            logger.error("hub_file_read_failed", path=str(self._path), error=str(e))
            raise TransportError(f"Cannot read hub file {self._path}: {e}") from e
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.error("hub_file_corrupt", path=str(self._path), error=str(e))
            raise TransportError(f"Hub file {self._path} is corrupt: {e}") from e

    def _save(self, state: dict[str, Any]) -> None:
        try:
            self._write_state(state)
        except OSError as e:
            logger.error("hub_file_write_failed", path=str(self._path), error=str(e))
            raise TransportError(f"Cannot write hub file {self._path}: {e}") from e

    # -------------------------------------------------------------------------
    # Hub operations
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        async with self._lock:
            state = self._load()
            if not self._path.exists():
                self._save(state)
        logger.info("hub_file_ready", path=str(self._path))

    async def get_module_settings(self, module_id: str) -> HubModuleSettings:
        async with self._lock:
            state = self._load()
        raw = state["modules"].get(module_id)
        if raw is None:
            return HubModuleSettings(module_id=module_id)
        return HubModuleSettings.model_validate(raw)

    async def set_module_settings(
        self,
        module_id: str,
        settings: HubModuleSettings,
    ) -> None:
        stamped = settings.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        async with self._lock:
            state = self._load()
            state["modules"][module_id] = stamped.model_dump(mode="json")
            self._save(state)

    async def schedule(self, record: ScheduledNotificationRecord) -> None:
        async with self._lock:
            state = self._load()
            module = state["modules"].get(record.module_id)
            if module is not None and not module.get("enabled", True):
                raise ScheduleRejectedError(
                    f"Module {record.module_id} is disabled in the hub"
                )
            state["notifications"][record.key] = record.model_dump(mode="json")
            _append_history(state, record, NotificationEvent.SCHEDULED)
            self._save(state)

    async def cancel(self, key: str) -> bool:
        async with self._lock:
            state = self._load()
            raw = state["notifications"].pop(key, None)
            if raw is None:
                return False
            _append_history_raw(state, raw, NotificationEvent.CANCELLED)
            self._save(state)
            return True

    async def list_scheduled(self, module_id: str) -> list[ScheduledNotificationRecord]:
        async with self._lock:
            state = self._load()

        records = []
        for key, raw in state["notifications"].items():
            try:
                record = ScheduledNotificationRecord.model_validate(raw)
            except ValidationError as e:
                # Unreadable entries are left alone; they belong to nobody.
                logger.warning("hub_record_invalid", key=key, error=str(e))
                continue
            if record.module_id == module_id:
                records.append(record)
        return sorted(records, key=lambda r: (r.fire_at, r.key))

    async def get_history(
        self,
        module_id: str,
        limit: int = HISTORY_LIMIT,
    ) -> list[NotificationHistoryEntry]:
        async with self._lock:
            state = self._load()

        entries = []
        for raw in reversed(state["history"]):
            try:
                entry = NotificationHistoryEntry.model_validate(raw)
            except ValidationError as e:
                logger.warning("hub_history_entry_invalid", error=str(e))
                continue
            if entry.module_id == module_id:
                entries.append(entry)
                if len(entries) >= limit:
                    break
        return entries


def _append_history(
    state: dict[str, Any],
    record: ScheduledNotificationRecord,
    event: NotificationEvent,
) -> None:
    entry = NotificationHistoryEntry.for_record(record, event)
    history = state["history"]
    history.append(entry.model_dump(mode="json"))
    del history[:-HISTORY_LIMIT]


def _append_history_raw(
    state: dict[str, Any],
    raw: dict[str, Any],
    event: NotificationEvent,
) -> None:
    try:
        record = ScheduledNotificationRecord.model_validate(raw)
    except ValidationError:
        # The cancel itself stands; an unreadable record leaves no history.
        return
    _append_history(state, record, event)
