"""Notification dispatcher contract.

The dispatcher is the device's local-notification scheduler.  remindkit only
needs one-shot triggers at an exact instant, repeating daily / weekly
triggers at a time of day, and cancellation by handle.  Every backend
subclasses ``NotificationDispatcher``.

``InMemoryDispatcher`` is a complete in-process implementation used by
the composition root and the tests.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

logger = logging.getLogger("remindkit.notifications.dispatcher")


# ---------------------------------------------------------------------------
# Trigger payloads
# ---------------------------------------------------------------------------


@dataclass
class NotificationContent:
    """What the user sees when a trigger fires.

    Attributes:
        title: Notification title.
        body:  Notification body text.
        data:  Opaque payload handed back to the app when tapped.
    """

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RepeatingTrigger:
    """A trigger that repeats forever at ``hour:minute``.

    Attributes:
        hour:    0–23.
        minute:  0–59.
        weekday: Monday = 0 … Sunday = 6 for a weekly trigger; None = daily.
    """

    hour: int
    minute: int
    weekday: int | None = None

    def __post_init__(self) -> None:
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise ValueError(f"Invalid time of day {self.hour:02d}:{self.minute:02d}")
        if self.weekday is not None and not (0 <= self.weekday <= 6):
            raise ValueError(f"Invalid weekday {self.weekday} (expected 0–6)")


@dataclass
class ScheduledTrigger:
    """A trigger as reported back by the dispatcher.

    Exactly one of ``instant`` (one-shot) and ``repeating`` is set.
    """

    trigger_id: str
    content: NotificationContent
    instant: datetime | None = None
    repeating: RepeatingTrigger | None = None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class DispatchError(Exception):
    """The dispatcher could not schedule or cancel a trigger.

    Attributes:
        transient: True if retrying the same call may succeed.
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class PastTriggerRejected(DispatchError):
    """The requested instant is not in the future."""

    def __init__(self, instant: datetime) -> None:
        super().__init__(f"Trigger instant {instant.isoformat()} is not in the future")
        self.instant = instant


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class NotificationDispatcher(ABC):
    """Abstract base for notification backends.

    Implementations must reject (``PastTriggerRejected``) or silently ignore
    any one-shot instant at or before their current time.
    """

    @abstractmethod
    async def schedule_one_shot(self, content: NotificationContent, instant: datetime) -> str:
        """Schedule a single notification at ``instant``; return its handle."""

    @abstractmethod
    async def schedule_repeating(self, content: NotificationContent, trigger: RepeatingTrigger) -> str:
        """Schedule a daily or weekly repeating notification; return its handle."""

    @abstractmethod
    async def cancel(self, trigger_id: str) -> None:
        """Cancel one trigger.  Unknown handles are ignored."""

    async def cancel_all(self, trigger_ids: Iterable[str]) -> None:
        """Cancel several triggers."""
        for trigger_id in trigger_ids:
            if trigger_id:
                await self.cancel(trigger_id)

    @abstractmethod
    async def get_scheduled(self) -> list[ScheduledTrigger]:
        """Return every trigger that has not fired or been cancelled."""


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryDispatcher(NotificationDispatcher):
    """Dispatcher that keeps triggers in a dict.

    One-shot triggers whose instant has passed (per ``clock``) are treated
    as delivered and no longer reported by ``get_scheduled``.

    Usage::

        dispatcher = InMemoryDispatcher(clock=lambda: datetime(2024, 1, 1, 8, 0))
        trigger_id = await dispatcher.schedule_one_shot(content, datetime(2024, 1, 2, 9, 0))
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._triggers: dict[str, ScheduledTrigger] = {}
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"trigger-{next(self._ids)}"

    async def schedule_one_shot(self, content: NotificationContent, instant: datetime) -> str:
        if instant <= self._clock():
            raise PastTriggerRejected(instant)
        trigger_id = self._next_id()
        self._triggers[trigger_id] = ScheduledTrigger(trigger_id, content, instant=instant)
        logger.debug("Scheduled one-shot %s at %s", trigger_id, instant.isoformat())
        return trigger_id

    async def schedule_repeating(self, content: NotificationContent, trigger: RepeatingTrigger) -> str:
        trigger_id = self._next_id()
        self._triggers[trigger_id] = ScheduledTrigger(trigger_id, content, repeating=trigger)
        logger.debug(
            "Scheduled repeating %s at %02d:%02d (weekday=%s)",
            trigger_id, trigger.hour, trigger.minute, trigger.weekday,
        )
        return trigger_id

    async def cancel(self, trigger_id: str) -> None:
        if self._triggers.pop(trigger_id, None) is None:
            logger.debug("Cancel of unknown trigger %s ignored", trigger_id)

    async def get_scheduled(self) -> list[ScheduledTrigger]:
        now = self._clock()
        return [
            t for t in self._triggers.values()
            if t.repeating is not None or (t.instant is not None and t.instant > now)
        ]
