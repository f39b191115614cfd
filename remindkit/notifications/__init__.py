"""Notification triggers.

Modules:
    dispatcher — backend contract and the in-memory backend
    planner    — reminder → trigger planning, scheduling, refresh
    birthdays  — three-trigger birthday policy and birthday lists
"""

from remindkit.notifications.birthdays import (
    BirthdayPolicy,
    days_left,
    next_birthday,
    todays_birthdays,
    upcoming_birthdays,
)
from remindkit.notifications.dispatcher import (
    DispatchError,
    InMemoryDispatcher,
    NotificationContent,
    NotificationDispatcher,
    PastTriggerRejected,
    RepeatingTrigger,
    ScheduledTrigger,
)
from remindkit.notifications.planner import (
    PlanResult,
    TriggerOutcome,
    TriggerPlanner,
    TriggerSpec,
    TriggersNotCancelled,
)

__all__ = [
    "NotificationDispatcher",
    "InMemoryDispatcher",
    "NotificationContent",
    "RepeatingTrigger",
    "ScheduledTrigger",
    "DispatchError",
    "PastTriggerRejected",
    "TriggerPlanner",
    "TriggerSpec",
    "TriggerOutcome",
    "PlanResult",
    "TriggersNotCancelled",
    "BirthdayPolicy",
    "next_birthday",
    "days_left",
    "upcoming_birthdays",
    "todays_birthdays",
]
