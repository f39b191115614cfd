"""Menstrual cycle prediction engine.

Calendar averaging only:
- Next period start = last period start + average cycle length
- Ovulation = next period start − luteal phase (14 days)
- Fertile window = [ovulation − 5, ovulation + 1]
- Current phase from the day of cycle

Two different "fertile" notions coexist and must not be merged: the
fertile *window* above, and the ±2 day *ovulation band* used to label the
current phase.

The tracker also maintains ``CycleHistory``: cycle lengths are filled in
retroactively when the next period is logged, and the running averages
are recomputed after every change.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from remindkit.config_loader import EngineConfig, get_engine_config
from remindkit.menstrual.regularity import (
    calculate_cycle_regularity,
    regularity_label,
    round_half_up,
)
from remindkit.models.menstrual import CycleHistory, CycleRecord

logger = logging.getLogger("remindkit.menstrual.cycle_tracker")


class PhaseKind(str, Enum):
    none = "none"
    future = "future"
    menstruation = "menstruation"
    follicular = "follicular"
    ovulation = "ovulation"
    luteal = "luteal"
    late = "late"
    very_late = "very_late"


@dataclass
class Phase:
    """Where today falls in the current cycle.

    Attributes:
        kind:         Phase classification.
        day_of_cycle: 1-indexed day of the current cycle (None for ``none``).
        days_late:    Days past the expected next period (late phases only).
        description:  Human-readable summary.
    """

    kind: PhaseKind
    day_of_cycle: int | None = None
    days_late: int | None = None
    description: str = ""


@dataclass(frozen=True)
class FertileWindow:
    """Predicted fertile window (inclusive) around the ovulation day."""

    start: date
    end: date
    ovulation_day: date

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass
class CycleSummary:
    """Everything the cycle overview needs, computed as of one day.

    Attributes:
        last_period_start:      Latest logged period start.
        next_period:            Predicted next period start.
        days_until_next_period: Negative when the period is late.
        fertile_window:         Fertile window before ``next_period``.
        phase:                  Current phase (``PhaseKind.none`` without history).
        average_cycle_length:   Running average cycle length.
        average_period_length:  Running average period length.
        regularity:             0–100 score, None if data is insufficient.
        regularity_label:       Label for ``regularity``.
        cycles_logged:          Number of records.
    """

    last_period_start: date | None
    next_period: date | None
    days_until_next_period: int | None
    fertile_window: FertileWindow | None
    phase: Phase
    average_cycle_length: int
    average_period_length: int
    regularity: int | None
    regularity_label: str
    cycles_logged: int


class CycleTracker:
    """Predict cycles and maintain cycle history.

    Usage::

        tracker = CycleTracker()
        tracker.record_period_start(history, date(2024, 1, 29), period_length=5)
        summary = tracker.summarize(history, today=date(2024, 2, 3))
        print(summary.next_period, summary.phase.kind)
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or get_engine_config()

    @property
    def _mc_config(self):
        return self._config.menstrual

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    @staticmethod
    def predict_next_period(last_start: date | None, avg_cycle: int) -> date | None:
        """Return ``last_start + avg_cycle`` days, or None without a last start."""
        if last_start is None:
            return None
        return last_start + timedelta(days=avg_cycle)

    def calculate_fertile_window(self, next_period: date) -> FertileWindow:
        """Fertile window for the cycle ending at ``next_period``.

        Args:
            next_period: Predicted start of the next period.

        Returns:
            FertileWindow spanning ovulation − 5 through ovulation + 1.
        """
        mc = self._mc_config
        ovulation = next_period - timedelta(days=mc.luteal_phase_days)
        return FertileWindow(
            start=ovulation - timedelta(days=mc.fertile_days_before_ovulation),
            end=ovulation + timedelta(days=mc.fertile_days_after_ovulation),
            ovulation_day=ovulation,
        )

    def get_current_phase(
        self,
        last_start: date | None,
        avg_cycle: int,
        avg_period: int,
        today: date,
    ) -> Phase:
        """Classify ``today`` within the cycle that began at ``last_start``.

        Bands, checked in order (``d`` is the day of cycle, ``ov`` is
        ``avg_cycle − 14``):

            d < 1                       future
            d ≤ avg_period              menstruation
            d < ov − 2                  follicular
            d ≤ ov + 2                  ovulation
            d ≤ avg_cycle               luteal
            d ≤ avg_cycle + 7           late
            otherwise                   very_late

        Args:
            last_start: Latest period start, or None.
            avg_cycle:  Average cycle length in days.
            avg_period: Average period length in days.
            today:      Reference date.

        Returns:
            Phase; ``PhaseKind.none`` when there is no last start.
        """
        if last_start is None:
            return Phase(PhaseKind.none, description="No period logged yet")

        mc = self._mc_config
        day = (today - last_start).days + 1

        if day < 1:
            return Phase(PhaseKind.future, day, description="The logged period has not started yet")
        if day <= avg_period:
            return Phase(PhaseKind.menstruation, day, description=f"Period day {day}")

        ovulation_day = avg_cycle - mc.luteal_phase_days
        band = mc.ovulation_band_days
        if day < ovulation_day - band:
            return Phase(PhaseKind.follicular, day, description="Follicular phase")
        if day <= ovulation_day + band:
            return Phase(PhaseKind.ovulation, day, description="Ovulation period")
        if day <= avg_cycle:
            return Phase(PhaseKind.luteal, day, description="Luteal phase")

        days_late = day - avg_cycle
        if days_late <= mc.late_tolerance_days:
            return Phase(
                PhaseKind.late, day, days_late,
                description=f"Period is {days_late} day{'s' if days_late != 1 else ''} late",
            )
        return Phase(
            PhaseKind.very_late, day, days_late,
            description=f"Period is {days_late} days late, consider consulting a doctor",
        )

    def days_until_next_period(self, history: CycleHistory, today: date) -> int | None:
        next_period = self.predict_next_period(history.last_period_start, history.average_cycle_length)
        if next_period is None:
            return None
        return (next_period - today).days

    def is_date_in_period(self, history: CycleHistory, day: date) -> bool:
        """True if ``day`` falls inside a logged period or the predicted next one.

        Logged periods without a length use the average period length.
        """
        for record in history.records:
            length = record.period_length or history.average_period_length
            if record.start_date <= day < record.start_date + timedelta(days=length):
                return True

        next_period = self.predict_next_period(history.last_period_start, history.average_cycle_length)
        if next_period is None:
            return False
        return next_period <= day < next_period + timedelta(days=history.average_period_length)

    def is_date_in_fertile_window(self, history: CycleHistory, day: date) -> bool:
        next_period = self.predict_next_period(history.last_period_start, history.average_cycle_length)
        if next_period is None:
            return False
        return day in self.calculate_fertile_window(next_period)

    # ------------------------------------------------------------------
    # History maintenance
    # ------------------------------------------------------------------

    def _linked_length(self, start: date, next_start: date) -> int | None:
        """Cycle length between two starts, or None outside storage bounds."""
        length = (next_start - start).days
        return length if self._mc_config.cycle_length.storage.contains(length) else None

    def recompute_averages(self, history: CycleHistory) -> None:
        """Recompute both running averages in place.

        Only cycle lengths within the *average* bounds (21–35) and period
        lengths within 3–10 count; with none, the defaults apply.
        """
        mc = self._mc_config
        cycles = [
            r.cycle_length for r in history.records
            if mc.cycle_length.average.contains(r.cycle_length)
        ]
        periods = [
            r.period_length for r in history.records
            if mc.period_length.contains(r.period_length)
        ]
        history.average_cycle_length = (
            round_half_up(statistics.mean(cycles)) if cycles else mc.default_cycle_length
        )
        history.average_period_length = (
            round_half_up(statistics.mean(periods)) if periods else mc.default_period_length
        )

    def record_period_start(
        self,
        history: CycleHistory,
        start: date,
        period_length: int | None = None,
    ) -> CycleRecord:
        """Log a period start and update the history in place.

        Logging a start that already exists only updates its period length.
        The record before the new one gets its ``cycle_length`` filled in
        retroactively; a back-filled record takes its own length from the
        record after it.

        Args:
            history:       History to update.
            start:         First day of the period.
            period_length: Length in days, if known.

        Returns:
            The new (or updated) record.
        """
        for index, existing in enumerate(history.records):
            if existing.start_date == start:
                if period_length is not None:
                    existing = CycleRecord.model_validate(
                        {**existing.model_dump(), "period_length": period_length}
                    )
                    history.records[index] = existing
                self.recompute_averages(history)
                return existing

        record = CycleRecord(start_date=start, period_length=period_length)
        records = sorted([*history.records, record], key=lambda r: r.start_date)
        index = records.index(record)

        if index > 0:
            previous = records[index - 1]
            previous.cycle_length = self._linked_length(previous.start_date, start)
        if index < len(records) - 1:
            record.cycle_length = self._linked_length(start, records[index + 1].start_date)

        history.records = records
        self.recompute_averages(history)
        logger.info(
            "Recorded period start %s (avg cycle %d, avg period %d)",
            start.isoformat(), history.average_cycle_length, history.average_period_length,
        )
        return record

    def remove_record(self, history: CycleHistory, record_id: str) -> bool:
        """Delete a record and relink its neighbours.

        Returns:
            False if no record has ``record_id``.
        """
        records = list(history.records)
        for index, record in enumerate(records):
            if record.id == record_id:
                break
        else:
            return False

        del records[index]
        if index > 0:
            previous = records[index - 1]
            previous.cycle_length = (
                self._linked_length(previous.start_date, records[index].start_date)
                if index < len(records)
                else None
            )

        history.records = records
        self.recompute_averages(history)
        logger.info("Removed cycle record %s", record_id)
        return True

    def repair_history(self, history: CycleHistory) -> int:
        """Sort records, drop cycle lengths outside storage bounds, recompute averages.

        Returns:
            Number of cycle lengths cleared.
        """
        storage = self._mc_config.cycle_length.storage
        history.records = sorted(history.records, key=lambda r: r.start_date)

        cleared = 0
        for record in history.records:
            if record.cycle_length is not None and not storage.contains(record.cycle_length):
                logger.warning(
                    "Clearing out-of-range cycle length %d on %s",
                    record.cycle_length, record.start_date.isoformat(),
                )
                record.cycle_length = None
                cleared += 1

        self.recompute_averages(history)
        return cleared

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summarize(self, history: CycleHistory, today: date) -> CycleSummary:
        last_start = history.last_period_start
        next_period = self.predict_next_period(last_start, history.average_cycle_length)
        regularity = calculate_cycle_regularity(history.records, self._mc_config)

        return CycleSummary(
            last_period_start=last_start,
            next_period=next_period,
            days_until_next_period=(next_period - today).days if next_period else None,
            fertile_window=self.calculate_fertile_window(next_period) if next_period else None,
            phase=self.get_current_phase(
                last_start, history.average_cycle_length, history.average_period_length, today
            ),
            average_cycle_length=history.average_cycle_length,
            average_period_length=history.average_period_length,
            regularity=regularity,
            regularity_label=regularity_label(regularity),
            cycles_logged=len(history.records),
        )
