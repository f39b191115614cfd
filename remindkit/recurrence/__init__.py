"""Recurrence rules and occurrence enumeration.

Modules:
    rules      — RecurrenceRule tagged union, JSON codec, descriptions
    evaluator  — occurs_on(rule, day)
    enumerator — next/all occurrences within a horizon, upcoming lists
"""

from remindkit.recurrence.enumerator import (
    Occurrence,
    all_occurrences_in_window,
    next_occurrence_on_or_after,
    upcoming_occurrences,
)
from remindkit.recurrence.evaluator import occurs_on
from remindkit.recurrence.rules import (
    DailyRule,
    IntervalRule,
    InvalidRecurrenceRule,
    RecurrenceRule,
    SpecificDatesRule,
    WeeklyRule,
    describe_rule,
    dump_rule,
    parse_rule,
)

__all__ = [
    "DailyRule",
    "IntervalRule",
    "WeeklyRule",
    "SpecificDatesRule",
    "RecurrenceRule",
    "InvalidRecurrenceRule",
    "parse_rule",
    "dump_rule",
    "describe_rule",
    "occurs_on",
    "Occurrence",
    "all_occurrences_in_window",
    "next_occurrence_on_or_after",
    "upcoming_occurrences",
]
