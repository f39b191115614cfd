"""Persisted record schemas (JSON storage format)."""

from remindkit.models.menstrual import CycleHistory, CycleRecord
from remindkit.models.reminders import (
    Birthday,
    CustomReminder,
    Medication,
    Reminder,
    ReminderKind,
)

__all__ = [
    "Reminder",
    "ReminderKind",
    "Medication",
    "CustomReminder",
    "Birthday",
    "CycleRecord",
    "CycleHistory",
]
