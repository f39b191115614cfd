"""Pydantic models for menstrual cycle history."""

from __future__ import annotations

from datetime import date

from pydantic import Field, field_validator

from remindkit.models.base import RemindkitBase, new_id


class CycleRecord(RemindkitBase):
    """One logged period.

    ``cycle_length`` is unknown until the next period is logged; it is then
    filled in retroactively (start of this period to start of the next).
    """

    id: str = Field(default_factory=lambda: new_id("cycle"))
    start_date: date
    period_length: int | None = Field(default=None, ge=1, le=10)
    cycle_length: int | None = Field(default=None, ge=1)


class CycleHistory(RemindkitBase):
    """All logged periods plus the running averages derived from them."""

    records: list[CycleRecord] = Field(default_factory=list)
    average_cycle_length: int = 28
    average_period_length: int = 5

    @field_validator("records")
    @classmethod
    def _ordered_by_start(cls, v: list[CycleRecord]) -> list[CycleRecord]:
        return sorted(v, key=lambda r: r.start_date)

    @property
    def last_period_start(self) -> date | None:
        """Start of the latest logged period; derived, never stored."""
        return self.records[-1].start_date if self.records else None
