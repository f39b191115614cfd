"""Trigger planner: turn reminders into dispatcher triggers.

Planning is pure (``plan``); scheduling talks to the dispatcher
(``schedule``) and never raises for dispatcher failures.  Each requested
trigger ends up as a ``TriggerOutcome``:

    scheduled — the dispatcher returned a handle
    skipped   — the instant was not in the future (``PastTriggerRejected``)
    failed    — a permanent ``DispatchError``, or a transient one that
                outlived the retry budget

Per rule kind:

    daily           one repeating daily trigger per time of day
    weekly          one repeating weekly trigger per (time, weekday)
    interval        one-shot triggers for every occurrence within
                    ``horizons.interval_materialization_days`` (60) days
    specific_dates  one-shot triggers for every date from today onward

Interval reminders only ever cover a finite horizon, so they must be
re-materialized periodically: call ``refresh_if_needed`` whenever the app
comes to the foreground (see ``needs_refresh`` for the threshold).

Cancelling is retried the same way.  A handle that still cannot be
cancelled is kept in the owner's ``pending_cancel_ids`` rather than
dropped, so the notification it names is never orphaned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Iterable, Sequence

from remindkit.config_loader import EngineConfig, get_engine_config
from remindkit.models.reminders import Birthday, Reminder
from remindkit.notifications.dispatcher import (
    DispatchError,
    NotificationContent,
    NotificationDispatcher,
    PastTriggerRejected,
    RepeatingTrigger,
)
from remindkit.recurrence.enumerator import all_occurrences_in_window
from remindkit.recurrence.rules import (
    DailyRule,
    IntervalRule,
    SpecificDatesRule,
    WeeklyRule,
)

logger = logging.getLogger("remindkit.notifications.planner")

STATUS_SCHEDULED = "scheduled"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


class TriggersNotCancelled(DispatchError):
    """Some of an owner's triggers are still live after a cancel attempt.

    Attributes:
        owner_id:    ID of the reminder or birthday.
        trigger_ids: Handles that are still live.
    """

    def __init__(self, owner_id: str, trigger_ids: Sequence[str]) -> None:
        super().__init__(
            f"{len(trigger_ids)} trigger(s) of {owner_id} could not be cancelled", transient=True
        )
        self.owner_id = owner_id
        self.trigger_ids = list(trigger_ids)


@dataclass
class TriggerSpec:
    """One trigger the planner wants the dispatcher to create.

    Exactly one of ``instant`` (one-shot) and ``repeating`` is set.
    """

    content: NotificationContent
    instant: datetime | None = None
    repeating: RepeatingTrigger | None = None

    @property
    def is_one_shot(self) -> bool:
        return self.instant is not None


@dataclass
class TriggerOutcome:
    """Result of submitting a single TriggerSpec.

    Attributes:
        spec:       The submitted spec.
        status:     'scheduled', 'skipped' or 'failed'.
        trigger_id: Dispatcher handle when scheduled.
        error:      Error message when skipped or failed.
        attempts:   Number of dispatcher calls made.
    """

    spec: TriggerSpec
    status: str
    trigger_id: str | None = None
    error: str | None = None
    attempts: int = 1


@dataclass
class PlanResult:
    """Result of (re)scheduling one reminder or birthday.

    Attributes:
        owner_id:  ID of the reminder / birthday.
        outcomes:  One outcome per submitted spec, in submission order.
        cancelled: Number of previously stored handles cancelled first.
        uncancelled: Previously stored handles the dispatcher would not cancel.
    """

    owner_id: str
    outcomes: list[TriggerOutcome] = field(default_factory=list)
    cancelled: int = 0
    uncancelled: list[str] = field(default_factory=list)

    @property
    def trigger_ids(self) -> list[str]:
        return [o.trigger_id for o in self.outcomes if o.status == STATUS_SCHEDULED and o.trigger_id]

    @property
    def scheduled(self) -> list[TriggerOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_SCHEDULED]

    @property
    def skipped(self) -> list[TriggerOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_SKIPPED]

    @property
    def failed(self) -> list[TriggerOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_FAILED]

    @property
    def status(self) -> str:
        """'success', 'partial' (some failures) or 'error' (nothing scheduled)."""
        if not self.failed:
            return "success"
        return "partial" if self.scheduled else "error"


class TriggerPlanner:
    """Plan and schedule notification triggers for reminders.

    Usage::

        planner = TriggerPlanner(dispatcher)
        result = await planner.schedule(medication, now=datetime.now())
        repository.save(medication)   # medication.trigger_ids updated
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        config: EngineConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the planner.

        Args:
            dispatcher: Notification backend.
            config:     Engine config (defaults to the global singleton).
            sleep:      Awaitable used between retries.
        """
        self._dispatcher = dispatcher
        self._config = config or get_engine_config()
        self._sleep = sleep

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def config(self) -> EngineConfig:
        return self._config

    def earliest_allowed(self, now: datetime) -> datetime:
        """One-shot triggers must be strictly later than this instant."""
        return now + timedelta(seconds=self._config.scheduling.min_lead_seconds)

    # ------------------------------------------------------------------
    # Planning (pure)
    # ------------------------------------------------------------------

    def plan(self, reminder: Reminder, now: datetime) -> list[TriggerSpec]:
        """Return the triggers a reminder needs as of ``now``.

        Args:
            reminder: Reminder to plan for.
            now:      Reference instant.

        Returns:
            Repeating specs in (time, weekday) order, or one-shot specs in
            instant order.  One-shot specs are never at or before
            ``earliest_allowed(now)``.
        """
        rule = reminder.frequency

        if isinstance(rule, DailyRule):
            return [
                TriggerSpec(self._content(reminder, t), repeating=RepeatingTrigger(t.hour, t.minute))
                for t in reminder.times_of_day
            ]

        if isinstance(rule, WeeklyRule):
            return [
                TriggerSpec(
                    self._content(reminder, t, weekday=wd),
                    repeating=RepeatingTrigger(t.hour, t.minute, weekday=wd),
                )
                for t in reminder.times_of_day
                for wd in sorted(rule.value)
            ]

        if isinstance(rule, IntervalRule):
            dates = all_occurrences_in_window(
                rule, now.date(), self._config.horizons.interval_materialization_days
            )
        elif isinstance(rule, SpecificDatesRule):
            dates = sorted(d for d in rule.value if d >= now.date())
        else:
            raise TypeError(f"Unknown recurrence rule type: {type(rule).__name__}")

        cutoff = self.earliest_allowed(now)
        specs = []
        for d in dates:
            for t in reminder.times_of_day:
                instant = datetime.combine(d, t)
                if instant > cutoff:
                    specs.append(TriggerSpec(self._content(reminder, t, day=d), instant=instant))
        specs.sort(key=lambda s: s.instant)
        return specs

    @staticmethod
    def _content(
        reminder: Reminder, t: time, weekday: int | None = None, day: date | None = None
    ) -> NotificationContent:
        data = {**reminder.notification_data(), "time": t.strftime("%H:%M")}
        if weekday is not None:
            data["weekday"] = weekday
        if day is not None:
            data["date"] = day.isoformat()
        return NotificationContent(
            title=reminder.notification_title(),
            body=reminder.notification_body(),
            data=data,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule(self, reminder: Reminder, now: datetime) -> PlanResult:
        """Cancel the reminder's stored triggers, then schedule fresh ones.

        Running this twice in a row leaves one set of triggers, not two.
        ``reminder.trigger_ids`` is replaced with the new handles; handles
        that could not be cancelled move to ``reminder.pending_cancel_ids``.
        The caller persists the reminder.

        Args:
            reminder: Reminder to (re)schedule.
            now:      Reference instant.

        Returns:
            PlanResult with per-trigger outcomes.
        """
        cancelled = await self.release(reminder)
        result = await self.submit(reminder.id, self.plan(reminder, now))
        result.cancelled = cancelled
        result.uncancelled = list(reminder.pending_cancel_ids)
        reminder.trigger_ids = result.trigger_ids

        logger.info(
            "Scheduled %s '%s': %d trigger(s), %d skipped, %d failed, %d cancelled, %d still pending cancel",
            reminder.kind.value, reminder.title,
            len(result.scheduled), len(result.skipped), len(result.failed), cancelled,
            len(result.uncancelled),
        )
        return result

    async def cancel(self, reminder: Reminder) -> int:
        """Cancel every stored trigger of a reminder; see ``release``."""
        return await self.release(reminder)

    async def release(self, owner: Reminder | Birthday) -> int:
        """Cancel every handle an owner holds and clear ``trigger_ids``.

        Handles the dispatcher refused to cancel stay in
        ``owner.pending_cancel_ids`` so a later call can retry them.

        Returns:
            Number of handles cancelled.
        """
        handles = list(dict.fromkeys([*owner.pending_cancel_ids, *owner.trigger_ids]))
        uncancelled = await self.cancel_triggers(handles)
        owner.trigger_ids = []
        owner.pending_cancel_ids = uncancelled
        return len(handles) - len(uncancelled)

    async def reschedule_all(self, reminders: Iterable[Reminder], now: datetime) -> list[PlanResult]:
        """Reschedule several reminders one after another."""
        results = [await self.schedule(r, now) for r in reminders]
        logger.info("Rescheduled %d reminder(s)", len(results))
        return results

    async def retry_pending_cancels(self, owner: Reminder | Birthday) -> int:
        """Retry the handles left in ``owner.pending_cancel_ids``; return how many went."""
        if not owner.pending_cancel_ids:
            return 0
        uncancelled = await self.cancel_triggers(owner.pending_cancel_ids)
        cancelled = len(owner.pending_cancel_ids) - len(uncancelled)
        owner.pending_cancel_ids = uncancelled
        return cancelled

    async def cancel_triggers(self, trigger_ids: Sequence[str]) -> list[str]:
        """Cancel handles one by one.

        Returns:
            The handles that are still live: the dispatcher refused them
            permanently, or kept failing transiently past the retry budget.
        """
        uncancelled = [t for t in trigger_ids if not await self._cancel_one(t)]
        if uncancelled:
            logger.warning("%d trigger(s) could not be cancelled: %s", len(uncancelled), uncancelled)
        return uncancelled

    async def _cancel_one(self, trigger_id: str) -> bool:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._dispatcher.cancel(trigger_id)
                return True
            except DispatchError as exc:
                if await self._backoff(exc, attempt):
                    continue
                logger.error("Could not cancel trigger %s after %d attempt(s): %s", trigger_id, attempt, exc)
                return False

    async def submit(self, owner_id: str, specs: Iterable[TriggerSpec]) -> PlanResult:
        """Submit specs to the dispatcher in order and collect outcomes."""
        result = PlanResult(owner_id=owner_id)
        for spec in specs:
            result.outcomes.append(await self._submit_one(spec))
        return result

    async def _submit_one(self, spec: TriggerSpec) -> TriggerOutcome:
        """Submit one spec, retrying transient failures with exponential backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                if spec.is_one_shot:
                    trigger_id = await self._dispatcher.schedule_one_shot(spec.content, spec.instant)
                else:
                    trigger_id = await self._dispatcher.schedule_repeating(spec.content, spec.repeating)
                return TriggerOutcome(spec, STATUS_SCHEDULED, trigger_id=trigger_id, attempts=attempt)
            except PastTriggerRejected as exc:
                logger.info("Skipping trigger: %s", exc)
                return TriggerOutcome(spec, STATUS_SKIPPED, error=str(exc), attempts=attempt)
            except DispatchError as exc:
                if await self._backoff(exc, attempt):
                    continue
                logger.error("Dispatch failed after %d attempt(s): %s", attempt, exc)
                return TriggerOutcome(spec, STATUS_FAILED, error=str(exc), attempts=attempt)

    async def _backoff(self, exc: DispatchError, attempt: int) -> bool:
        """Sleep before the next attempt; False when the error should not be retried."""
        sc = self._config.scheduling
        if not exc.transient or attempt >= sc.retry_attempts:
            return False
        delay = sc.retry_base_delay_s * (2 ** (attempt - 1))
        logger.warning(
            "Transient dispatch error (attempt %d/%d), retrying in %.2fs: %s",
            attempt, sc.retry_attempts, delay, exc,
        )
        await self._sleep(delay)
        return True

    # ------------------------------------------------------------------
    # Re-materialization of interval reminders
    # ------------------------------------------------------------------

    def refresh_threshold_days(self, interval_days: int) -> int:
        """Remaining coverage (days) below which an interval reminder is refreshed."""
        sc = self._config.scheduling
        if interval_days <= sc.short_interval_max_days:
            return sc.short_interval_refresh_days
        return interval_days

    async def needs_refresh(self, reminder: Reminder, now: datetime) -> bool:
        """Return True if an interval reminder's one-shot triggers are running out.

        True when none of its triggers is still pending, or when the last
        pending one is closer than ``refresh_threshold_days``.  Other rule
        kinds never need refreshing.
        """
        rule = reminder.frequency
        if not isinstance(rule, IntervalRule):
            return False

        own = set(reminder.trigger_ids)
        pending = [
            t.instant
            for t in await self._dispatcher.get_scheduled()
            if t.trigger_id in own and t.instant is not None and t.instant > now
        ]
        if not pending:
            logger.info("No pending triggers for '%s'", reminder.title)
            return True

        remaining_days = (max(pending) - now) / timedelta(days=1)
        return remaining_days < self.refresh_threshold_days(rule.value)

    async def refresh_if_needed(self, reminder: Reminder, now: datetime) -> PlanResult | None:
        """Reschedule an interval reminder if ``needs_refresh``; else return None."""
        if not await self.needs_refresh(reminder, now):
            return None
        logger.info("Re-materializing interval reminder '%s'", reminder.title)
        return await self.schedule(reminder, now)
