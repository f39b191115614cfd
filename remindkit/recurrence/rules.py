"""Recurrence rule model.

A recurrence rule answers "which calendar dates does this event fall on".
Four kinds exist, discriminated by ``type`` exactly as they are stored::

    {"type": "daily"}
    {"type": "interval", "value": 3, "anchor": "2024-01-01"}
    {"type": "weekly", "value": [0, 2, 4]}          # Monday = 0
    {"type": "specific_dates", "value": ["2024-03-01", "2024-03-15"]}

Rules are immutable and validated on construction.  A malformed rule never
reaches the evaluator: ``parse_rule`` and the helper constructors raise
``InvalidRecurrenceRule`` instead of coercing bad input.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_serializer,
)

WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_WORKWEEK = frozenset({0, 1, 2, 3, 4})
_WEEKEND = frozenset({5, 6})

Weekday = Annotated[StrictInt, Field(ge=0, le=6)]

_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def _calendar_date(value: Any) -> date:
    # Only real dates and YYYY-MM-DD strings; no timestamps, no datetimes
    if isinstance(value, datetime):
        raise ValueError(f"expected a calendar date, got datetime {value.isoformat()}")
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DATE.fullmatch(value):
        return date.fromisoformat(value)
    raise ValueError(f"expected a YYYY-MM-DD date, got {value!r}")


CalendarDate = Annotated[date, BeforeValidator(_calendar_date)]


class InvalidRecurrenceRule(ValueError):
    """Raised when a recurrence rule cannot be constructed from its input."""


# ---------------------------------------------------------------------------
# Rule kinds
# ---------------------------------------------------------------------------


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class DailyRule(_Rule):
    """Every calendar day."""

    # Older records carry a meaningless "value": 1
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Literal["daily"] = "daily"


class IntervalRule(_Rule):
    """Every ``value`` days, counting from ``anchor`` (inclusive)."""

    type: Literal["interval"] = "interval"
    value: StrictInt = Field(ge=1)
    anchor: CalendarDate


class WeeklyRule(_Rule):
    """On the given weekdays (Monday = 0 … Sunday = 6)."""

    type: Literal["weekly"] = "weekly"
    value: frozenset[Weekday] = Field(min_length=1)

    @field_serializer("value")
    def _sorted_days(self, value: frozenset[int]) -> list[int]:
        return sorted(value)


class SpecificDatesRule(_Rule):
    """On an explicit set of calendar dates."""

    type: Literal["specific_dates"] = "specific_dates"
    value: frozenset[CalendarDate] = Field(min_length=1)

    @field_serializer("value")
    def _sorted_dates(self, value: frozenset[date]) -> list[str]:
        return [d.isoformat() for d in sorted(value)]


RecurrenceRule = Annotated[
    Union[DailyRule, IntervalRule, WeeklyRule, SpecificDatesRule],
    Field(discriminator="type"),
]

RULE_TYPES = (DailyRule, IntervalRule, WeeklyRule, SpecificDatesRule)

_rule_adapter: TypeAdapter = TypeAdapter(RecurrenceRule)


# ---------------------------------------------------------------------------
# Construction / codec
# ---------------------------------------------------------------------------


def parse_rule(data: Any, default_anchor: date | None = None) -> RecurrenceRule:
    """Build a rule from its stored JSON form.

    Records written before interval anchors were stored carry only
    ``{"type": "interval", "value": n}``; for those the caller supplies
    ``default_anchor`` (normally the owning reminder's creation date).

    Args:
        data:           Stored rule dict, or an already-built rule.
        default_anchor: Anchor for interval rules that lack one.

    Returns:
        The validated rule.

    Raises:
        InvalidRecurrenceRule: If the input does not describe a valid rule.
    """
    if isinstance(data, RULE_TYPES):
        return data
    if not isinstance(data, dict):
        raise InvalidRecurrenceRule(f"Recurrence rule must be a mapping, got {type(data).__name__}")

    if data.get("type") == "interval" and data.get("anchor") is None:
        if default_anchor is None:
            raise InvalidRecurrenceRule("Interval rule has no anchor date")
        data = {**data, "anchor": default_anchor}

    try:
        return _rule_adapter.validate_python(data)
    except ValidationError as exc:
        raise InvalidRecurrenceRule(
            f"Invalid recurrence rule {data!r}: {exc.error_count()} error(s)\n{exc}"
        ) from exc


def dump_rule(rule: RecurrenceRule) -> dict:
    """Return the JSON-serializable storage form of a rule."""
    return rule.model_dump(mode="json")


def daily() -> DailyRule:
    return DailyRule()


def every_n_days(n: int, anchor: date) -> IntervalRule:
    return parse_rule({"type": "interval", "value": n, "anchor": anchor})


def weekly(days: Iterable[int]) -> WeeklyRule:
    return parse_rule({"type": "weekly", "value": list(days)})


def on_dates(dates: Iterable[date | str]) -> SpecificDatesRule:
    return parse_rule({"type": "specific_dates", "value": list(dates)})


# ---------------------------------------------------------------------------
# Human-readable description
# ---------------------------------------------------------------------------


def _short_date(d: date) -> str:
    return f"{d.day} {MONTH_ABBR[d.month - 1]}"


def describe_rule(rule: RecurrenceRule | None) -> str:
    """Return a short label for a rule, as shown next to a reminder.

    Examples: ``"Every day"``, ``"Every 3 days"``, ``"Weekdays"``,
    ``"Mon, Wed, Fri"``, ``"15 Oct & 20 Oct"``, ``"4 days selected"``.
    """
    if rule is None:
        return "Not set"

    if isinstance(rule, DailyRule):
        return "Every day"

    if isinstance(rule, IntervalRule):
        return "Every day" if rule.value == 1 else f"Every {rule.value} days"

    if isinstance(rule, WeeklyRule):
        if len(rule.value) == 7:
            return "Every day"
        if rule.value == _WORKWEEK:
            return "Weekdays"
        if rule.value == _WEEKEND:
            return "Weekends"
        return ", ".join(WEEKDAY_ABBR[d] for d in sorted(rule.value))

    if isinstance(rule, SpecificDatesRule):
        dates = sorted(rule.value)
        if len(dates) > 2:
            return f"{len(dates)} days selected"
        return " & ".join(_short_date(d) for d in dates)

    raise TypeError(f"Unknown recurrence rule type: {type(rule).__name__}")
