"""Typed persistence for reminders, birthdays and cycle history.

The repository keeps an in-memory cache of every collection and flushes
the whole collection to the key-value store after each mutation.  All
mutations run under one ``asyncio.Lock``, so there is a single writer per
repository instance.

Store layout (one key per collection, JSON values):

    medications       list of Medication
    custom_reminders  list of CustomReminder
    birthdays         list of Birthday
    menstrual_data    CycleHistory

Saving a reminder or birthday (re)schedules its triggers; deleting one
cancels them.  A delete whose triggers cannot all be cancelled keeps the
record, with the live handles in ``pending_cancel_ids``, and raises
``TriggersNotCancelled``; saving or refreshing retries them.  Readers get
deep copies, and saved records are stored as copies, so the cache only
changes under the lock.  When the store write fails, the in-memory state
keeps the change and ``PersistenceFailure`` is raised; nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import ValidationError

from remindkit.config_loader import EngineConfig, get_engine_config
from remindkit.menstrual.cycle_tracker import CycleTracker
from remindkit.models.base import RemindkitBase, local_now
from remindkit.models.menstrual import CycleHistory, CycleRecord
from remindkit.models.reminders import Birthday, CustomReminder, Medication, Reminder
from remindkit.notifications.birthdays import BirthdayPolicy
from remindkit.notifications.planner import PlanResult, TriggerPlanner, TriggersNotCancelled
from remindkit.storage.store import KeyValueStore, PersistenceFailure

logger = logging.getLogger("remindkit.storage.repository")

KEY_MEDICATIONS = "medications"
KEY_CUSTOM_REMINDERS = "custom_reminders"
KEY_BIRTHDAYS = "birthdays"
KEY_MENSTRUAL = "menstrual_data"

_COLLECTIONS: dict[str, type[RemindkitBase]] = {
    KEY_MEDICATIONS: Medication,
    KEY_CUSTOM_REMINDERS: CustomReminder,
    KEY_BIRTHDAYS: Birthday,
}

M = TypeVar("M", bound=RemindkitBase)


class LimitExceeded(Exception):
    """Adding the item would exceed a configured collection limit."""

    def __init__(self, collection: str, limit: int) -> None:
        super().__init__(f"Cannot add more than {limit} item(s) to '{collection}'")
        self.collection = collection
        self.limit = limit


def _copies(items: list[M]) -> list[M]:
    return [item.model_copy(deep=True) for item in items]


def _adopt_handles(item: Reminder | Birthday, stored: Reminder | Birthday) -> None:
    """Make ``item`` responsible for every handle the stored version still holds."""
    item.pending_cancel_ids = list(dict.fromkeys([
        *stored.pending_cancel_ids,
        *stored.trigger_ids,
        *item.pending_cancel_ids,
    ]))


class Repository:
    """Cached, lock-guarded access to every persisted collection.

    Usage::

        repo = Repository(JsonFileStore(settings.storage_dir), planner)
        await repo.load()
        await repo.save_medication(med, now=datetime.now())
    """

    def __init__(
        self,
        store: KeyValueStore,
        planner: TriggerPlanner,
        birthday_policy: BirthdayPolicy | None = None,
        tracker: CycleTracker | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._planner = planner
        self._config = config or get_engine_config()
        self._birthdays = birthday_policy or BirthdayPolicy(planner, self._config.birthday)
        self._tracker = tracker or CycleTracker(self._config)
        self._lock = asyncio.Lock()
        self._cache: dict[str, list[Any]] = {}
        self._history: CycleHistory | None = None

    # ------------------------------------------------------------------
    # Loading / flushing
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Read every collection from the store into the cache.

        Records that no longer validate are logged and dropped.  Cycle
        history is repaired on load.

        Raises:
            PersistenceFailure: If the store cannot be read.
        """
        async with self._lock:
            for key in _COLLECTIONS:
                await self._ensure_loaded(key)
            await self._ensure_history()

    async def _ensure_loaded(self, key: str) -> list[Any]:
        if key not in self._cache:
            raw = await self._store.get(key)
            self._cache[key] = self._parse_collection(key, raw)
        return self._cache[key]

    @staticmethod
    def _parse_collection(key: str, raw: Any) -> list[Any]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise PersistenceFailure(key, "get", f"expected a list, got {type(raw).__name__}")

        model = _COLLECTIONS[key]
        items = []
        for entry in raw:
            try:
                items.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Dropping invalid %s record: %s", key, exc.errors()[0]["msg"])
        logger.debug("Loaded %d %s record(s)", len(items), key)
        return items

    async def _ensure_history(self) -> CycleHistory:
        if self._history is None:
            raw = await self._store.get(KEY_MENSTRUAL)
            try:
                history = CycleHistory.model_validate(raw) if raw is not None else CycleHistory()
            except ValidationError as exc:
                raise PersistenceFailure(KEY_MENSTRUAL, "get", str(exc)) from exc
            if self._tracker.repair_history(history):
                logger.info("Repaired stored cycle history")
            self._history = history
        return self._history

    async def _flush(self, key: str) -> None:
        if key == KEY_MENSTRUAL:
            value = self._history.model_dump(mode="json") if self._history else None
        else:
            value = [item.model_dump(mode="json") for item in self._cache.get(key, [])]
        await self._store.set(key, value)

    # ------------------------------------------------------------------
    # Generic collection helpers (call with the lock held)
    # ------------------------------------------------------------------

    @staticmethod
    def _find(items: list[M], item_id: str) -> tuple[int, M] | tuple[None, None]:
        for index, item in enumerate(items):
            if item.id == item_id:
                return index, item
        return None, None

    def _upsert(self, items: list[M], item: M) -> M | None:
        """Insert or replace by id with a copy of ``item``; return the replaced item, if any."""
        index, existing = self._find(items, item.id)
        item.updated_at = local_now()
        item = item.model_copy(deep=True)
        if index is None:
            items.append(item)
        else:
            items[index] = item
        return existing

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def list_medications(self) -> list[Medication]:
        async with self._lock:
            return _copies(await self._ensure_loaded(KEY_MEDICATIONS))

    async def get_medication(self, medication_id: str) -> Medication | None:
        async with self._lock:
            _, item = self._find(await self._ensure_loaded(KEY_MEDICATIONS), medication_id)
            return item.model_copy(deep=True) if item is not None else None

    async def save_medication(self, medication: Medication, now: datetime) -> PlanResult:
        """Insert or update a medication and (re)schedule its triggers."""
        return await self._save_reminder(KEY_MEDICATIONS, medication, now)

    async def delete_medication(self, medication_id: str) -> bool:
        return await self._delete_reminder(KEY_MEDICATIONS, medication_id)

    async def list_custom_reminders(self) -> list[CustomReminder]:
        async with self._lock:
            return _copies(await self._ensure_loaded(KEY_CUSTOM_REMINDERS))

    async def save_custom_reminder(self, reminder: CustomReminder, now: datetime) -> PlanResult:
        """Insert or update a custom reminder and schedule it.

        Raises:
            LimitExceeded: When adding a new reminder beyond
                           ``limits.max_custom_reminders``.
        """
        return await self._save_reminder(KEY_CUSTOM_REMINDERS, reminder, now)

    async def delete_custom_reminder(self, reminder_id: str) -> bool:
        return await self._delete_reminder(KEY_CUSTOM_REMINDERS, reminder_id)

    async def _save_reminder(self, key: str, reminder: Reminder, now: datetime) -> PlanResult:
        async with self._lock:
            items = await self._ensure_loaded(key)
            _, existing = self._find(items, reminder.id)

            if existing is None and key == KEY_CUSTOM_REMINDERS:
                limit = self._config.limits.max_custom_reminders
                if len(items) >= limit:
                    raise LimitExceeded(key, limit)

            if existing is not None:
                _adopt_handles(reminder, existing)
            result = await self._planner.schedule(reminder, now)

            self._upsert(items, reminder)
            await self._flush(key)
            return result

    async def _delete_reminder(self, key: str, reminder_id: str) -> bool:
        async with self._lock:
            items = await self._ensure_loaded(key)
            index, existing = self._find(items, reminder_id)
            if index is None:
                return False
            await self._planner.cancel(existing)
            if existing.pending_cancel_ids:
                await self._flush(key)
                raise TriggersNotCancelled(existing.id, existing.pending_cancel_ids)
            del items[index]
            await self._flush(key)
            logger.info("Deleted %s record %s", key, reminder_id)
            return True

    # ------------------------------------------------------------------
    # Birthdays
    # ------------------------------------------------------------------

    async def list_birthdays(self) -> list[Birthday]:
        async with self._lock:
            return _copies(await self._ensure_loaded(KEY_BIRTHDAYS))

    async def save_birthday(self, birthday: Birthday, now: datetime) -> PlanResult:
        """Insert or update a birthday and reschedule its three triggers."""
        async with self._lock:
            items = await self._ensure_loaded(KEY_BIRTHDAYS)
            _, existing = self._find(items, birthday.id)
            if existing is not None:
                _adopt_handles(birthday, existing)
            result = await self._birthdays.schedule(birthday, now)
            self._upsert(items, birthday)
            await self._flush(KEY_BIRTHDAYS)
            return result

    async def delete_birthday(self, birthday_id: str) -> bool:
        async with self._lock:
            items = await self._ensure_loaded(KEY_BIRTHDAYS)
            index, existing = self._find(items, birthday_id)
            if index is None:
                return False
            await self._birthdays.cancel(existing)
            if existing.pending_cancel_ids:
                await self._flush(KEY_BIRTHDAYS)
                raise TriggersNotCancelled(existing.id, existing.pending_cancel_ids)
            del items[index]
            await self._flush(KEY_BIRTHDAYS)
            logger.info("Deleted birthday %s", birthday_id)
            return True

    # ------------------------------------------------------------------
    # Menstrual data
    # ------------------------------------------------------------------

    async def get_cycle_history(self) -> CycleHistory:
        async with self._lock:
            return (await self._ensure_history()).model_copy(deep=True)

    async def record_period_start(self, start: date, period_length: int | None = None) -> CycleRecord:
        async with self._lock:
            history = await self._ensure_history()
            record = self._tracker.record_period_start(history, start, period_length)
            await self._flush(KEY_MENSTRUAL)
            return record

    async def remove_cycle_record(self, record_id: str) -> bool:
        async with self._lock:
            history = await self._ensure_history()
            removed = self._tracker.remove_record(history, record_id)
            if removed:
                await self._flush(KEY_MENSTRUAL)
            return removed

    # ------------------------------------------------------------------
    # Foreground refresh
    # ------------------------------------------------------------------

    async def refresh_triggers(self, now: datetime) -> list[PlanResult]:
        """Bring stored triggers up to date; call when the app comes to the foreground.

        Birthdays are rescheduled unconditionally (their next occurrence may
        have rolled over); interval medications only when running low.
        Handles left over from failed cancels are retried for every record.
        """
        async with self._lock:
            results: list[PlanResult] = []

            medications = await self._ensure_loaded(KEY_MEDICATIONS)
            for medication in medications:
                result = await self._planner.refresh_if_needed(medication, now)
                if result is not None:
                    results.append(result)
                else:
                    await self._planner.retry_pending_cancels(medication)

            for reminder in await self._ensure_loaded(KEY_CUSTOM_REMINDERS):
                await self._planner.retry_pending_cancels(reminder)

            birthdays = await self._ensure_loaded(KEY_BIRTHDAYS)
            for birthday in birthdays:
                results.append(await self._birthdays.schedule(birthday, now))

            for key in (KEY_MEDICATIONS, KEY_CUSTOM_REMINDERS, KEY_BIRTHDAYS):
                await self._flush(key)
            logger.info("Foreground refresh: %d plan(s) updated", len(results))
            return results
