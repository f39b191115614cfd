"""Key-value store backends.

The store is opaque: string keys to JSON-serializable values.  Backends
raise ``PersistenceFailure`` for any read or write problem and never retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any

logger = logging.getLogger("remindkit.storage.store")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class PersistenceFailure(Exception):
    """A store read or write failed.

    Attributes:
        key:       Store key involved.
        operation: 'get', 'set' or 'remove'.
    """

    def __init__(self, key: str, operation: str, reason: str) -> None:
        super().__init__(f"Storage {operation} failed for '{key}': {reason}")
        self.key = key
        self.operation = operation


class KeyValueStore(ABC):
    """Abstract async key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value, replacing any previous one."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key.  Absent keys are ignored."""


class InMemoryStore(KeyValueStore):
    """Dict-backed store.  Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Any | None:
        return deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceFailure(key, "set", str(exc)) from exc
        self._data[key] = deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """One ``<key>.json`` file per key inside ``directory``.

    Writes go to a temporary file in the same directory, then
    ``os.replace`` it over the target so a crash never leaves a
    half-written file.  File I/O runs in a worker thread.

    Usage::

        store = JsonFileStore(Path.home() / ".remindkit")
        await store.set("birthdays", [...])
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise PersistenceFailure(key, "resolve", "invalid key")
        return self._directory / f"{key}.json"

    async def get(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            raise PersistenceFailure(key, "get", str(exc)) from exc

    async def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            payload = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise PersistenceFailure(key, "set", str(exc)) from exc
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise PersistenceFailure(key, "set", str(exc)) from exc

    async def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise PersistenceFailure(key, "remove", str(exc)) from exc

    @staticmethod
    def _read(path: Path) -> Any | None:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
