"""Shared fixtures for remindkit tests."""

from __future__ import annotations

from datetime import date, datetime, time
from unittest.mock import AsyncMock

import pytest

from remindkit.config_loader import EngineConfig, load_engine_config
from remindkit.menstrual.cycle_tracker import CycleTracker
from remindkit.models.reminders import Birthday, Medication
from remindkit.notifications.birthdays import BirthdayPolicy
from remindkit.notifications.dispatcher import InMemoryDispatcher
from remindkit.notifications.planner import TriggerPlanner
from remindkit.recurrence.rules import daily, every_n_days, weekly
from remindkit.storage.repository import Repository
from remindkit.storage.store import InMemoryStore

# 2024-01-01 is a Monday
TEST_DATE = date(2024, 1, 1)
TEST_NOW = datetime(2024, 1, 1, 8, 0)


class FakeClock:
    """Settable wall clock shared by the dispatcher and the tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Config / clock
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_config() -> EngineConfig:
    """Load the bundled engine config for tests."""
    return load_engine_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(TEST_NOW)


# ---------------------------------------------------------------------------
# Engine components
# ---------------------------------------------------------------------------


@pytest.fixture
def dispatcher(clock: FakeClock) -> InMemoryDispatcher:
    return InMemoryDispatcher(clock=clock)


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Stand-in for asyncio.sleep so retry backoff does not slow tests down."""
    return AsyncMock()


@pytest.fixture
def planner(dispatcher: InMemoryDispatcher, engine_config: EngineConfig, no_sleep: AsyncMock) -> TriggerPlanner:
    return TriggerPlanner(dispatcher, engine_config, sleep=no_sleep)


@pytest.fixture
def birthday_policy(planner: TriggerPlanner, engine_config: EngineConfig) -> BirthdayPolicy:
    return BirthdayPolicy(planner, engine_config.birthday)


@pytest.fixture
def tracker(engine_config: EngineConfig) -> CycleTracker:
    return CycleTracker(engine_config)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repository(
    store: InMemoryStore,
    planner: TriggerPlanner,
    birthday_policy: BirthdayPolicy,
    tracker: CycleTracker,
    engine_config: EngineConfig,
) -> Repository:
    return Repository(store, planner, birthday_policy, tracker, engine_config)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@pytest.fixture
def daily_medication() -> Medication:
    """Twice-daily medication."""
    return Medication(
        title="Vitamin D",
        dosage="1000 IU",
        times_of_day=[time(20, 0), time(7, 30)],
        frequency=daily(),
        created_at=TEST_NOW,
    )


@pytest.fixture
def weekly_medication() -> Medication:
    """Monday / Wednesday / Friday at 09:00 and 21:00."""
    return Medication(
        title="Iron",
        times_of_day=[time(9, 0), time(21, 0)],
        frequency=weekly([0, 2, 4]),
        created_at=TEST_NOW,
    )


@pytest.fixture
def interval_medication() -> Medication:
    """Every 3 days at 09:00, starting on TEST_DATE."""
    return Medication(
        title="B12",
        dosage="1 tablet",
        times_of_day=[time(9, 0)],
        frequency=every_n_days(3, TEST_DATE),
        created_at=TEST_NOW,
    )


@pytest.fixture
def birthday() -> Birthday:
    """Birthday nine days after TEST_DATE, reminded 3 days ahead."""
    return Birthday(name="Alice", month=1, day=10, notification_days_before=3)
