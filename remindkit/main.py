"""remindkit composition root.

Wires settings, engine config, dispatcher, planner and repository
together.  Embedding apps call ``create_engine()`` once at startup and
``engine.repository.refresh_triggers(now)`` whenever they come to the
foreground.

Usage::

    from remindkit.main import configure_logging, create_engine

    configure_logging()
    engine = create_engine(dispatcher=MyPlatformDispatcher())
    await engine.repository.load()
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

from remindkit.config import Settings, get_settings
from remindkit.config_loader import EngineConfig, get_engine_config, reload_engine_config
from remindkit.menstrual.cycle_tracker import CycleTracker
from remindkit.notifications.birthdays import BirthdayPolicy
from remindkit.notifications.dispatcher import InMemoryDispatcher, NotificationDispatcher
from remindkit.notifications.planner import TriggerPlanner
from remindkit.storage.repository import Repository
from remindkit.storage.store import JsonFileStore, KeyValueStore

logger = logging.getLogger("remindkit")


# ---------- Logging ----------

def configure_logging(settings: Settings | None = None) -> None:
    s = settings or get_settings()
    level = logging.DEBUG if s.debug else getattr(logging, s.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Engine ----------

@dataclass
class Engine:
    """All wired-up engine components."""

    settings: Settings
    config: EngineConfig
    dispatcher: NotificationDispatcher
    planner: TriggerPlanner
    birthdays: BirthdayPolicy
    tracker: CycleTracker
    repository: Repository


def create_engine(
    settings: Settings | None = None,
    dispatcher: NotificationDispatcher | None = None,
    store: KeyValueStore | None = None,
) -> Engine:
    """Build an Engine.

    Args:
        settings:   Process settings (defaults to ``get_settings()``).
        dispatcher: Notification backend (defaults to InMemoryDispatcher).
        store:      Key-value store (defaults to a JsonFileStore in
                    ``settings.storage_dir``).

    Returns:
        A ready Engine; call ``await engine.repository.load()`` before use.
    """
    s = settings or get_settings()
    if s.engine_config_path is not None:
        config = reload_engine_config(s.engine_config_path)
    else:
        config = get_engine_config()

    dispatcher = dispatcher or InMemoryDispatcher()
    store = store or JsonFileStore(s.storage_dir)
    planner = TriggerPlanner(dispatcher, config)
    birthdays = BirthdayPolicy(planner, config.birthday)
    tracker = CycleTracker(config)
    repository = Repository(store, planner, birthdays, tracker, config)

    logger.info(
        "Starting %s v%s (engine config v%s, dispatcher=%s)",
        s.app_name, s.app_version, config.version, type(dispatcher).__name__,
    )
    return Engine(
        settings=s,
        config=config,
        dispatcher=dispatcher,
        planner=planner,
        birthdays=birthdays,
        tracker=tracker,
        repository=repository,
    )
