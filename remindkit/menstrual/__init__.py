"""Menstrual cycle prediction and history upkeep."""

from remindkit.menstrual.cycle_tracker import (
    CycleSummary,
    CycleTracker,
    FertileWindow,
    Phase,
    PhaseKind,
)
from remindkit.menstrual.regularity import calculate_cycle_regularity, regularity_label

__all__ = [
    "CycleTracker",
    "CycleSummary",
    "FertileWindow",
    "Phase",
    "PhaseKind",
    "calculate_cycle_regularity",
    "regularity_label",
]
