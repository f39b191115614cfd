"""Persistence: key-value store backends and the typed repository."""

from remindkit.storage.repository import LimitExceeded, Repository
from remindkit.storage.store import (
    InMemoryStore,
    JsonFileStore,
    KeyValueStore,
    PersistenceFailure,
)

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "PersistenceFailure",
    "Repository",
    "LimitExceeded",
]
