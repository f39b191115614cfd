"""Pydantic models for persisted reminders: medications, custom one-off
reminders, and birthdays."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import Field, TypeAdapter, ValidationError, field_serializer, field_validator, model_validator

from remindkit.models.base import RemindkitBase, TimestampMixin, local_now, new_id, to_local_naive
from remindkit.recurrence.rules import (
    IntervalRule,
    RecurrenceRule,
    SpecificDatesRule,
    parse_rule,
)

TITLE_MAX_LENGTH = 50

_DATETIME = TypeAdapter(datetime)


class ReminderKind(str, Enum):
    reminder = "reminder"
    medication = "medication"
    custom = "custom"


# ---------- Recurring reminders ----------

class Reminder(RemindkitBase, TimestampMixin):
    """A titled reminder that fires at fixed times of day on the days its
    recurrence rule selects.

    ``trigger_ids`` are the opaque handles returned by the notification
    dispatcher for the triggers currently scheduled on the reminder's behalf.
    ``pending_cancel_ids`` are older handles the dispatcher failed to cancel;
    they are retried on the next save, delete or foreground refresh.
    """

    id: str = Field(default_factory=lambda: new_id("reminder"))
    kind: ReminderKind = ReminderKind.reminder
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    payload: dict[str, Any] = Field(default_factory=dict)
    times_of_day: list[time] = Field(min_length=1)
    frequency: RecurrenceRule
    trigger_ids: list[str] = Field(default_factory=list)
    pending_cancel_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _anchor_interval_rule(cls, data: Any) -> Any:
        # Interval rules stored without an anchor count from the creation day.
        # A record with no creation timestamp is created now (see
        # TimestampMixin), so the anchor falls back to the wall-clock date.
        if not isinstance(data, dict):
            return data
        freq = data.get("frequency")
        if isinstance(freq, dict) and freq.get("type") == "interval" and freq.get("anchor") is None:
            created = data.get("created_at")
            try:
                created = to_local_naive(_DATETIME.validate_python(created)) if created is not None else local_now()
            except ValidationError:
                # Left for the created_at field to report
                return data
            data = {**data, "frequency": parse_rule(freq, default_anchor=created.date())}
        return data

    @field_validator("times_of_day")
    @classmethod
    def _ordered_unique_times(cls, v: list[time]) -> list[time]:
        return sorted({t.replace(second=0, microsecond=0, tzinfo=None) for t in v})

    @field_serializer("times_of_day")
    def _format_times(self, v: list[time]) -> list[str]:
        return [t.strftime("%H:%M") for t in v]

    @property
    def is_interval(self) -> bool:
        return isinstance(self.frequency, IntervalRule)

    def notification_title(self) -> str:
        return self.title

    def notification_body(self) -> str:
        return self.title

    def notification_data(self) -> dict[str, Any]:
        return {**self.payload, "type": self.kind.value, "reminderId": self.id}


class Medication(Reminder):
    id: str = Field(default_factory=lambda: new_id("medication"))
    kind: ReminderKind = ReminderKind.medication
    dosage: str = ""

    def notification_body(self) -> str:
        if self.dosage:
            return f"{self.dosage} - Medication reminder time"
        return "Medication reminder time"


class CustomReminder(Reminder):
    """A one-off reminder: exactly one date and one time of day."""

    id: str = Field(default_factory=lambda: new_id("custom"))
    kind: ReminderKind = ReminderKind.custom

    @model_validator(mode="after")
    def _single_instant(self) -> CustomReminder:
        if not isinstance(self.frequency, SpecificDatesRule) or len(self.frequency.value) != 1:
            raise ValueError("A custom reminder needs exactly one date")
        if len(self.times_of_day) != 1:
            raise ValueError("A custom reminder needs exactly one time of day")
        return self

    @classmethod
    def at(cls, title: str, when: datetime, **kwargs: Any) -> CustomReminder:
        return cls(
            title=title,
            times_of_day=[when.time()],
            frequency=SpecificDatesRule(value=frozenset({when.date()})),
            **kwargs,
        )

    @property
    def due(self) -> datetime:
        (day,) = self.frequency.value
        return datetime.combine(day, self.times_of_day[0])

    def notification_title(self) -> str:
        return "⏰ Reminder"


# ---------- Birthdays ----------

class Birthday(RemindkitBase, TimestampMixin):
    """A yearly birthday, identified by month and day (year is optional)."""

    id: str = Field(default_factory=lambda: new_id("birthday"))
    name: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    year: int | None = None
    notification_days_before: int = Field(default=1, ge=0, le=30)
    is_active: bool = True
    trigger_ids: list[str] = Field(default_factory=list)
    pending_cancel_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _valid_month_day(self) -> Birthday:
        # Validate against a leap year so Feb 29 is accepted
        if self.day > calendar.monthrange(2000, self.month)[1]:
            raise ValueError(f"Day {self.day} does not exist in month {self.month}")
        if self.year is not None:
            date(self.year, self.month, self.day)
        return self
