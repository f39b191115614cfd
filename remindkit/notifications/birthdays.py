"""Birthday trigger policy.

Each active birthday gets up to three one-shot triggers for its next
occurrence:

    before    occurrence − N days at 09:00   (omitted when N = 0)
    midnight  occurrence at 00:01
    morning   occurrence at 09:00

Only the next occurrence is materialized.  On the day itself, once all
three instants have passed, the following year's occurrence is planned.
Once an occurrence has passed its triggers are gone, so
``BirthdayPolicy.schedule`` must be re-run when the app comes to the
foreground and whenever a birthday is edited.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Iterable

from remindkit.config_loader import BirthdayConfig
from remindkit.models.reminders import Birthday
from remindkit.notifications.dispatcher import NotificationContent
from remindkit.notifications.planner import PlanResult, TriggerPlanner, TriggerSpec

logger = logging.getLogger("remindkit.notifications.birthdays")


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def birthday_in_year(month: int, day: int, year: int) -> date:
    """Return the birthday's date in ``year``; Feb 29 falls on Feb 28 in non-leap years."""
    if month == 2 and day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month, day)


def next_birthday(month: int, day: int, today: date) -> date:
    """Return the next occurrence on or after ``today``.

    A birthday that falls on ``today`` is still today's occurrence; it only
    rolls over to next year once the date itself has passed.
    """
    occurrence = birthday_in_year(month, day, today.year)
    if occurrence < today:
        occurrence = birthday_in_year(month, day, today.year + 1)
    return occurrence


def days_left(birthday: Birthday, today: date) -> int:
    """Days from ``today`` to the next occurrence (0 on the day itself)."""
    return (next_birthday(birthday.month, birthday.day, today) - today).days


def upcoming_birthdays(
    birthdays: Iterable[Birthday], today: date, max_days: int = 30
) -> list[tuple[Birthday, int]]:
    """Active birthdays coming up within ``max_days``, soonest first.

    Today's birthdays are excluded; see ``todays_birthdays``.

    Returns:
        (birthday, days_left) pairs sorted by days left, then name.
    """
    pairs = [(b, days_left(b, today)) for b in birthdays if b.is_active]
    pairs = [(b, n) for b, n in pairs if 0 < n <= max_days]
    pairs.sort(key=lambda p: (p[1], p[0].name.lower()))
    return pairs


def todays_birthdays(birthdays: Iterable[Birthday], today: date) -> list[Birthday]:
    return [b for b in birthdays if b.is_active and days_left(b, today) == 0]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class BirthdayPolicy:
    """Plan and schedule the three birthday triggers.

    Usage::

        policy = BirthdayPolicy(planner)
        result = await policy.schedule(birthday, now=datetime.now())
    """

    def __init__(self, planner: TriggerPlanner, config: BirthdayConfig | None = None) -> None:
        self._planner = planner
        self._config = config or planner.config.birthday

    def plan(self, birthday: Birthday, now: datetime) -> list[TriggerSpec]:
        """Return the future triggers for the next occurrence of ``birthday``.

        On the birthday itself, once every trigger of today's occurrence
        has passed, next year's occurrence is planned instead.

        Args:
            birthday: Birthday to plan for.
            now:      Reference instant.

        Returns:
            Up to three one-shot specs in instant order.  Inactive birthdays
            get none.
        """
        if not birthday.is_active:
            return []

        cutoff = self._planner.earliest_allowed(now)
        occurrence = next_birthday(birthday.month, birthday.day, now.date())
        candidates = [c for c in self._candidates(birthday, occurrence) if c[0] > cutoff]
        if not candidates:
            occurrence = birthday_in_year(birthday.month, birthday.day, occurrence.year + 1)
            logger.debug("Birthday '%s' passed for today; planning %s", birthday.name, occurrence)
            candidates = [c for c in self._candidates(birthday, occurrence) if c[0] > cutoff]

        specs = [
            TriggerSpec(
                NotificationContent(
                    title=title,
                    body=body,
                    data={"type": "birthday", "birthdayId": birthday.id, "timing": timing},
                ),
                instant=instant,
            )
            for instant, timing, title, body in candidates
        ]
        specs.sort(key=lambda s: s.instant)
        return specs

    def _candidates(self, birthday: Birthday, occurrence: date) -> list[tuple[datetime, str, str, str]]:
        cfg = self._config
        n = birthday.notification_days_before
        candidates = []
        if n > 0:
            candidates.append((
                datetime.combine(occurrence - timedelta(days=n), cfg.reminder_time),
                "before",
                "🎂 Upcoming Birthday",
                f"{n} day{'s' if n != 1 else ''} left until {birthday.name}'s birthday!",
            ))
        candidates.append((
            datetime.combine(occurrence, cfg.midnight_time),
            "midnight",
            "🎉 Birthday!",
            f"Today is {birthday.name}'s birthday!",
        ))
        candidates.append((
            datetime.combine(occurrence, cfg.congratulate_time),
            "morning",
            "🎂 Birthday Reminder",
            f"Don't forget to congratulate {birthday.name}!",
        ))
        return candidates

    async def schedule(self, birthday: Birthday, now: datetime) -> PlanResult:
        """Cancel the birthday's stored triggers, then schedule fresh ones.

        Handles that could not be cancelled stay in
        ``birthday.pending_cancel_ids``.
        """
        cancelled = await self._planner.release(birthday)
        result = await self._planner.submit(birthday.id, self.plan(birthday, now))
        result.cancelled = cancelled
        result.uncancelled = list(birthday.pending_cancel_ids)
        birthday.trigger_ids = result.trigger_ids
        logger.info(
            "Scheduled birthday '%s': %d trigger(s), %d cancelled",
            birthday.name, len(result.scheduled), cancelled,
        )
        return result

    async def cancel(self, birthday: Birthday) -> int:
        return await self._planner.release(birthday)

    async def schedule_all(self, birthdays: Iterable[Birthday], now: datetime) -> list[PlanResult]:
        return [await self.schedule(b, now) for b in birthdays]
