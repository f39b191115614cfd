"""Tests for the trigger planner and the in-memory dispatcher."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from remindkit.config_loader import EngineConfig
from remindkit.models.reminders import CustomReminder, Medication
from remindkit.notifications.dispatcher import (
    DispatchError,
    InMemoryDispatcher,
    NotificationContent,
    NotificationDispatcher,
    PastTriggerRejected,
    RepeatingTrigger,
)
from remindkit.notifications.planner import TriggerPlanner
from remindkit.recurrence.rules import daily, every_n_days, on_dates
from remindkit.tests.conftest import TEST_DATE, TEST_NOW, FakeClock


def mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock(spec=NotificationDispatcher)
    dispatcher.schedule_one_shot = AsyncMock(return_value="one-shot")
    dispatcher.schedule_repeating = AsyncMock(return_value="repeating")
    dispatcher.cancel = AsyncMock()
    dispatcher.get_scheduled = AsyncMock(return_value=[])
    return dispatcher


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestInMemoryDispatcher:
    @pytest.mark.asyncio
    async def test_rejects_past_instant(self, dispatcher: InMemoryDispatcher) -> None:
        with pytest.raises(PastTriggerRejected):
            await dispatcher.schedule_one_shot(NotificationContent("t", "b"), TEST_NOW)

    @pytest.mark.asyncio
    async def test_fired_one_shots_not_reported(self, dispatcher: InMemoryDispatcher, clock: FakeClock) -> None:
        await dispatcher.schedule_one_shot(NotificationContent("t", "b"), TEST_NOW + timedelta(hours=1))
        await dispatcher.schedule_repeating(NotificationContent("t", "b"), RepeatingTrigger(9, 0))
        assert len(await dispatcher.get_scheduled()) == 2
        clock.now = TEST_NOW + timedelta(hours=2)
        scheduled = await dispatcher.get_scheduled()
        assert len(scheduled) == 1
        assert scheduled[0].repeating == RepeatingTrigger(9, 0)

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, dispatcher: InMemoryDispatcher) -> None:
        await dispatcher.cancel("trigger-404")

    @pytest.mark.asyncio
    async def test_cancel_all(self, dispatcher: InMemoryDispatcher) -> None:
        ids = [
            await dispatcher.schedule_repeating(NotificationContent("t", "b"), RepeatingTrigger(h, 0))
            for h in (7, 8, 9)
        ]
        await dispatcher.cancel_all(ids)
        assert await dispatcher.get_scheduled() == []

    @pytest.mark.parametrize("hour, minute, weekday", [(24, 0, None), (9, 60, None), (9, 0, 7)])
    def test_repeating_trigger_validation(self, hour: int, minute: int, weekday) -> None:
        with pytest.raises(ValueError):
            RepeatingTrigger(hour, minute, weekday)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestPlan:
    def test_daily_one_repeating_per_time(self, planner: TriggerPlanner, daily_medication: Medication) -> None:
        specs = planner.plan(daily_medication, TEST_NOW)
        assert [s.repeating for s in specs] == [RepeatingTrigger(7, 30), RepeatingTrigger(20, 0)]
        assert not any(s.is_one_shot for s in specs)

    def test_weekly_one_per_time_and_weekday(self, planner: TriggerPlanner, weekly_medication: Medication) -> None:
        specs = planner.plan(weekly_medication, TEST_NOW)
        assert [(s.repeating.hour, s.repeating.weekday) for s in specs] == [
            (9, 0), (9, 2), (9, 4), (21, 0), (21, 2), (21, 4),
        ]

    def test_interval_materializes_sixty_days(
        self, planner: TriggerPlanner, interval_medication: Medication, engine_config: EngineConfig
    ) -> None:
        specs = planner.plan(interval_medication, TEST_NOW)
        horizon = engine_config.horizons.interval_materialization_days
        assert len(specs) == 20
        assert specs[0].instant == datetime(2024, 1, 1, 9, 0)
        assert specs[1].instant == datetime(2024, 1, 4, 9, 0)
        assert all(s.instant.date() < TEST_DATE + timedelta(days=horizon) for s in specs)
        assert all(s.is_one_shot for s in specs)

    def test_interval_skips_time_already_passed_today(self, planner: TriggerPlanner) -> None:
        med = Medication(title="B12", times_of_day=[time(7, 0)], frequency=every_n_days(3, TEST_DATE))
        specs = planner.plan(med, TEST_NOW)
        assert specs[0].instant == datetime(2024, 1, 4, 7, 0)
        assert len(specs) == 19

    def test_specific_dates_skip_past(self, planner: TriggerPlanner) -> None:
        med = Medication(
            title="Booster",
            times_of_day=[time(10, 0)],
            frequency=on_dates(["2023-12-31", "2024-01-01", "2024-02-01"]),
        )
        specs = planner.plan(med, TEST_NOW)
        assert [s.instant for s in specs] == [datetime(2024, 1, 1, 10, 0), datetime(2024, 2, 1, 10, 0)]

    def test_min_lead_excludes_imminent_instant(self, planner: TriggerPlanner) -> None:
        reminder = CustomReminder.at("Call mum", TEST_NOW)
        assert planner.plan(reminder, TEST_NOW - timedelta(seconds=5)) == []
        assert len(planner.plan(reminder, TEST_NOW - timedelta(seconds=15))) == 1

    def test_one_shot_never_at_or_before_now(self, planner: TriggerPlanner, interval_medication: Medication) -> None:
        now = datetime(2024, 1, 4, 9, 0)
        specs = planner.plan(interval_medication, now)
        assert all(s.instant > now for s in specs)

    def test_content(self, planner: TriggerPlanner, interval_medication: Medication) -> None:
        content = planner.plan(interval_medication, TEST_NOW)[0].content
        assert content.title == "B12"
        assert content.body == "1 tablet - Medication reminder time"
        assert content.data["type"] == "medication"
        assert content.data["reminderId"] == interval_medication.id
        assert content.data["date"] == "2024-01-01"
        assert content.data["time"] == "09:00"

    def test_custom_reminder_title(self, planner: TriggerPlanner) -> None:
        reminder = CustomReminder.at("Dentist", datetime(2024, 1, 2, 15, 0))
        (spec,) = planner.plan(reminder, TEST_NOW)
        assert spec.content.title == "⏰ Reminder"
        assert spec.content.body == "Dentist"
        assert spec.instant == datetime(2024, 1, 2, 15, 0)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TestSchedule:
    @pytest.mark.asyncio
    async def test_stores_trigger_ids(
        self, planner: TriggerPlanner, dispatcher: InMemoryDispatcher, daily_medication: Medication
    ) -> None:
        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.status == "success"
        assert len(daily_medication.trigger_ids) == 2
        scheduled = {t.trigger_id for t in await dispatcher.get_scheduled()}
        assert scheduled == set(daily_medication.trigger_ids)

    @pytest.mark.asyncio
    async def test_rescheduling_is_idempotent(
        self, planner: TriggerPlanner, dispatcher: InMemoryDispatcher, interval_medication: Medication
    ) -> None:
        await planner.schedule(interval_medication, TEST_NOW)
        first = len(await dispatcher.get_scheduled())
        result = await planner.schedule(interval_medication, TEST_NOW)
        assert len(await dispatcher.get_scheduled()) == first == 20
        assert result.cancelled == 20

    @pytest.mark.asyncio
    async def test_cancel_clears_triggers(
        self, planner: TriggerPlanner, dispatcher: InMemoryDispatcher, weekly_medication: Medication
    ) -> None:
        await planner.schedule(weekly_medication, TEST_NOW)
        assert await planner.cancel(weekly_medication) == 6
        assert weekly_medication.trigger_ids == []
        assert await dispatcher.get_scheduled() == []

    @pytest.mark.asyncio
    async def test_past_trigger_rejected_is_skipped(self, engine_config: EngineConfig, no_sleep: AsyncMock) -> None:
        # Dispatcher clock runs ahead of the planner's "now"
        dispatcher = InMemoryDispatcher(clock=FakeClock(datetime(2024, 1, 1, 12, 0)))
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)
        reminder = CustomReminder.at("Lunch", datetime(2024, 1, 1, 11, 0))

        result = await planner.schedule(reminder, TEST_NOW)
        assert len(result.skipped) == 1
        assert result.status == "success"
        assert reminder.trigger_ids == []

    @pytest.mark.asyncio
    async def test_transient_error_retried_with_backoff(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        dispatcher.schedule_repeating.side_effect = [
            DispatchError("busy", transient=True),
            DispatchError("busy", transient=True),
            "t-1",
            "t-2",
        ]
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)

        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.trigger_ids == ["t-1", "t-2"]
        assert result.outcomes[0].attempts == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_transient_error_exhausts_retries(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        dispatcher.schedule_repeating.side_effect = DispatchError("busy", transient=True)
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)

        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.status == "error"
        assert all(o.status == "failed" and o.attempts == 3 for o in result.outcomes)
        assert daily_medication.trigger_ids == []

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        dispatcher.schedule_repeating.side_effect = [DispatchError("denied"), "t-2"]
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)

        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.status == "partial"
        assert result.failed[0].error == "denied"
        assert result.failed[0].attempts == 1
        assert daily_medication.trigger_ids == ["t-2"]
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_cancel_error_retried(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        dispatcher.cancel.side_effect = [DispatchError("busy", transient=True), None]
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)
        daily_medication.trigger_ids = ["old-1"]

        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.cancelled == 1
        assert result.uncancelled == []
        assert daily_medication.pending_cancel_ids == []
        assert dispatcher.cancel.await_count == 2
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5]

    @pytest.mark.asyncio
    async def test_uncancelled_handles_are_kept(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        dispatcher.cancel.side_effect = DispatchError("denied")
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)
        daily_medication.trigger_ids = ["old-1"]

        result = await planner.schedule(daily_medication, TEST_NOW)
        assert result.cancelled == 0
        assert result.uncancelled == ["old-1"]
        assert len(result.scheduled) == 2
        assert daily_medication.pending_cancel_ids == ["old-1"]
        assert "old-1" not in daily_medication.trigger_ids

        dispatcher.cancel.side_effect = None
        assert await planner.retry_pending_cancels(daily_medication) == 1
        assert daily_medication.pending_cancel_ids == []

    @pytest.mark.asyncio
    async def test_cancel_retries_pending_handles(
        self, engine_config: EngineConfig, no_sleep: AsyncMock, daily_medication: Medication
    ) -> None:
        dispatcher = mock_dispatcher()
        planner = TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)
        daily_medication.trigger_ids = ["t-1"]
        daily_medication.pending_cancel_ids = ["old-1", "t-1"]

        assert await planner.cancel(daily_medication) == 2
        assert [c.args[0] for c in dispatcher.cancel.await_args_list] == ["old-1", "t-1"]
        assert daily_medication.trigger_ids == []
        assert daily_medication.pending_cancel_ids == []


# ---------------------------------------------------------------------------
# Re-materialization
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_threshold(self, planner: TriggerPlanner) -> None:
        assert planner.refresh_threshold_days(1) == 7
        assert planner.refresh_threshold_days(3) == 7
        assert planner.refresh_threshold_days(4) == 4
        assert planner.refresh_threshold_days(10) == 10

    @pytest.mark.asyncio
    async def test_fresh_schedule_needs_no_refresh(
        self, planner: TriggerPlanner, interval_medication: Medication
    ) -> None:
        await planner.schedule(interval_medication, TEST_NOW)
        assert not await planner.needs_refresh(interval_medication, TEST_NOW)

    @pytest.mark.asyncio
    async def test_unscheduled_interval_needs_refresh(
        self, planner: TriggerPlanner, interval_medication: Medication
    ) -> None:
        assert await planner.needs_refresh(interval_medication, TEST_NOW)

    @pytest.mark.asyncio
    async def test_non_interval_never_needs_refresh(
        self, planner: TriggerPlanner, daily_medication: Medication
    ) -> None:
        assert not await planner.needs_refresh(daily_medication, TEST_NOW)
        assert await planner.refresh_if_needed(daily_medication, TEST_NOW) is None

    @pytest.mark.asyncio
    async def test_refresh_when_coverage_runs_low(
        self, planner: TriggerPlanner, clock: FakeClock, interval_medication: Medication
    ) -> None:
        await planner.schedule(interval_medication, TEST_NOW)
        # Last materialized occurrence is 2024-02-27 09:00
        later = datetime(2024, 2, 22, 8, 0)
        clock.now = later
        assert await planner.needs_refresh(interval_medication, later)

        result = await planner.refresh_if_needed(interval_medication, later)
        assert result is not None
        assert result.scheduled[0].spec.instant == datetime(2024, 2, 24, 9, 0)
        assert not await planner.needs_refresh(interval_medication, later)

    @pytest.mark.asyncio
    async def test_long_interval_threshold(self, planner: TriggerPlanner, clock: FakeClock) -> None:
        med = Medication(title="Shot", times_of_day=[time(9, 0)], frequency=every_n_days(10, TEST_DATE))
        await planner.schedule(med, TEST_NOW)
        # Occurrences through 2024-02-20; refresh once fewer than 10 days remain
        clock.now = datetime(2024, 2, 10, 8, 0)
        assert not await planner.needs_refresh(med, clock.now)
        clock.now = datetime(2024, 2, 11, 10, 0)
        assert await planner.needs_refresh(med, clock.now)
