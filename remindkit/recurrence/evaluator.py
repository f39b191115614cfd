"""Day-membership evaluation for recurrence rules.

``occurs_on`` is a pure function of ``(rule, day)``: it never looks at the
wall clock and never fails for a rule that passed construction.
"""

from __future__ import annotations

from datetime import date, datetime

from remindkit.recurrence.rules import (
    DailyRule,
    IntervalRule,
    RecurrenceRule,
    SpecificDatesRule,
    WeeklyRule,
)


def as_day(value: date | datetime) -> date:
    """Normalize a datetime to its calendar day (dates pass through)."""
    if isinstance(value, datetime):
        return value.date()
    return value


def days_between(start: date | datetime, end: date | datetime) -> int:
    """Calendar-day difference ``end - start``; negative if end is earlier."""
    return (as_day(end) - as_day(start)).days


def occurs_on(rule: RecurrenceRule, day: date | datetime) -> bool:
    """Return True if ``rule`` matches the calendar day ``day``.

    Args:
        rule: A constructed recurrence rule.
        day:  Date to test.  A datetime is reduced to its date.

    Returns:
        Whether the event recurs on that day.

    Raises:
        TypeError: If ``rule`` is not one of the four rule kinds.
    """
    d = as_day(day)

    if isinstance(rule, DailyRule):
        return True

    if isinstance(rule, IntervalRule):
        offset = days_between(rule.anchor, d)
        return offset >= 0 and offset % rule.value == 0

    if isinstance(rule, WeeklyRule):
        return d.weekday() in rule.value

    if isinstance(rule, SpecificDatesRule):
        return d in rule.value

    raise TypeError(f"Unknown recurrence rule type: {type(rule).__name__}")
