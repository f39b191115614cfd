"""Occurrence enumeration over a bounded horizon.

The reference algorithm is a linear day-scan: check ``start``,
``start + 1`` … ``start + horizon_days - 1`` with ``occurs_on``.  It is
simple and correct for every rule kind.  ``all_occurrences_in_window``
hands interval and weekly rules to ``dateutil.rrule`` and filters
specific-dates rules directly; both must return exactly what
``scan_occurrences`` returns.

Two horizons are in use (see ``engine_config.yaml``):

- ``horizons.upcoming_days`` (30) for "what's coming up" lists,
- ``horizons.interval_materialization_days`` (60) for pre-scheduling
  every-N-days reminders as one-shot triggers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from dateutil.rrule import DAILY, WEEKLY, rrule

from remindkit.config_loader import get_engine_config
from remindkit.recurrence.evaluator import as_day, days_between, occurs_on
from remindkit.recurrence.rules import (
    IntervalRule,
    RecurrenceRule,
    SpecificDatesRule,
    WeeklyRule,
)

logger = logging.getLogger("remindkit.recurrence.enumerator")


@dataclass(frozen=True, order=True)
class Occurrence:
    """One concrete ``(date, time-of-day)`` instance of a reminder.

    Derived on demand and never persisted.
    """

    date: date
    time: time

    @property
    def at(self) -> datetime:
        return datetime.combine(self.date, self.time)


# ---------------------------------------------------------------------------
# Date enumeration
# ---------------------------------------------------------------------------


def scan_occurrences(rule: RecurrenceRule, start: date | datetime, horizon_days: int) -> list[date]:
    """Reference day-by-day scan; examines exactly ``horizon_days`` candidates."""
    first = as_day(start)
    return [
        first + timedelta(days=i)
        for i in range(max(0, horizon_days))
        if occurs_on(rule, first + timedelta(days=i))
    ]


def _recurrence(rule: RecurrenceRule, first: date) -> rrule | None:
    """dateutil rrule equivalent of an interval or weekly rule, else None."""
    if isinstance(rule, IntervalRule):
        # Fast-forward to the last occurrence on or before ``first`` so old
        # anchors do not make rrule iterate over years of history
        skipped = max(0, days_between(rule.anchor, first)) // rule.value
        dtstart = rule.anchor + timedelta(days=skipped * rule.value)
        return rrule(DAILY, interval=rule.value, dtstart=_midnight(dtstart))
    if isinstance(rule, WeeklyRule):
        # rrule weekday ints use Monday = 0, same as WeeklyRule
        return rrule(WEEKLY, byweekday=sorted(rule.value), dtstart=_midnight(first))
    return None


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _fast_path(rule: RecurrenceRule, first: date, horizon_days: int) -> list[date] | None:
    """Enumerate without a day-scan where the rule kind allows it, else None."""
    last = first + timedelta(days=horizon_days - 1)

    recurrence = _recurrence(rule, first)
    if recurrence is not None:
        return [dt.date() for dt in recurrence.between(_midnight(first), _midnight(last), inc=True)]

    if isinstance(rule, SpecificDatesRule):
        return sorted(d for d in rule.value if first <= d <= last)

    return None


def all_occurrences_in_window(
    rule: RecurrenceRule, start: date | datetime, horizon_days: int
) -> list[date]:
    """Return every matching date in ``[start, start + horizon_days)``, ascending.

    Args:
        rule:         Recurrence rule to enumerate.
        start:        First candidate day (a datetime is reduced to its date).
        horizon_days: Number of candidate days; ``<= 0`` yields nothing.

    Returns:
        Matching dates, never earlier than ``start``.
    """
    if horizon_days <= 0:
        return []
    first = as_day(start)
    fast = _fast_path(rule, first, horizon_days)
    if fast is not None:
        return fast
    return scan_occurrences(rule, first, horizon_days)


def next_occurrence_on_or_after(
    rule: RecurrenceRule, start: date | datetime, horizon_days: int
) -> date | None:
    """Return the first matching date within the horizon, or None if there is none."""
    first = as_day(start)
    for i in range(max(0, horizon_days)):
        candidate = first + timedelta(days=i)
        if occurs_on(rule, candidate):
            return candidate
    return None


# ---------------------------------------------------------------------------
# Occurrences with times of day
# ---------------------------------------------------------------------------


def upcoming_occurrences(
    rule: RecurrenceRule,
    times_of_day: Iterable[time],
    now: datetime,
    horizon_days: int | None = None,
) -> list[Occurrence]:
    """List the concrete occurrences from ``now`` onward, soonest first.

    Occurrences earlier today than ``now`` are dropped.

    Args:
        rule:         Recurrence rule.
        times_of_day: Reminder times.
        now:          Reference instant.
        horizon_days: Days to scan; defaults to ``horizons.upcoming_days``.

    Returns:
        Sorted occurrences.
    """
    if horizon_days is None:
        horizon_days = get_engine_config().horizons.upcoming_days
    times = sorted(set(times_of_day))
    occurrences = [
        Occurrence(d, t)
        for d in all_occurrences_in_window(rule, now, horizon_days)
        for t in times
        if datetime.combine(d, t) >= now
    ]
    occurrences.sort()
    logger.debug("%d upcoming occurrence(s) within %d days", len(occurrences), horizon_days)
    return occurrences


def next_occurrence(
    rule: RecurrenceRule,
    times_of_day: Iterable[time],
    now: datetime,
    horizon_days: int | None = None,
) -> Occurrence | None:
    """Return the soonest upcoming occurrence, or None within the horizon."""
    upcoming = upcoming_occurrences(rule, times_of_day, now, horizon_days)
    return upcoming[0] if upcoming else None


def days_until(rule: RecurrenceRule, today: date, horizon_days: int | None = None) -> int | None:
    """Days from ``today`` to the rule's next matching date (0 = today)."""
    if horizon_days is None:
        horizon_days = get_engine_config().horizons.upcoming_days
    nxt = next_occurrence_on_or_after(rule, today, horizon_days)
    return None if nxt is None else (nxt - today).days
