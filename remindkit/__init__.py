"""remindkit: recurrence resolution and predictive scheduling for personal reminders.

This package resolves recurrence rules into concrete dates, turns
reminders and birthdays into notification triggers, and predicts
menstrual cycles from logged history.

Subpackages:
    models/        — Persisted record schemas (pydantic)
    recurrence/    — Recurrence rules, day evaluation, occurrence enumeration
    notifications/ — Dispatcher contract, trigger planner, birthday policy
    menstrual/     — Cycle prediction, phases, history upkeep, regularity
    storage/       — Key-value store backends and the repository

Core modules:
    config         — Process settings (REMINDKIT_* environment variables)
    config_loader  — Load/validate/hot-reload engine_config.yaml
    main           — Logging setup and the create_engine() composition root
"""

from remindkit.config_loader import EngineConfig, get_engine_config
from remindkit.recurrence.rules import InvalidRecurrenceRule, RecurrenceRule, parse_rule

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "get_engine_config",
    "RecurrenceRule",
    "InvalidRecurrenceRule",
    "parse_rule",
]
