# src/tasksync/preferences/store.py

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

from ..core.ports import PreferenceBackend
from ..tasks.task_models import QuerySpec

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "query"


class JsonFilePreferenceBackend:
    """
    Preferences persisted as a small JSON document.

    Writes go through a temp file + os.replace so a crash never leaves a
    half-written file behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Unreadable preferences file %s; using defaults.", self._path, exc_info=True)
            return None
        return data if isinstance(data, dict) else None

    def write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(OSError):
            os.chmod(self._path, 0o600)


class MemoryPreferenceBackend:
    """Process-local backend (tests, or runs without a data dir)."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data = dict(data) if data else None
        self.writes = 0

    def read(self) -> dict[str, Any] | None:
        return dict(self.data) if self.data is not None else None

    def write(self, data: dict[str, Any]) -> None:
        self.data = dict(data)
        self.writes += 1


class PreferenceStore:
    """
    Last chosen filter/sort/search selection.

    Lifecycle: load() once at startup, set() saves on change only.
    The QueryEngine reads the current QuerySpec through get().
    """

    def __init__(self, backend: PreferenceBackend) -> None:
        self._backend = backend
        self._spec = QuerySpec()
        self._listeners: list[Callable[[QuerySpec], None]] = []

    def load(self) -> QuerySpec:
        data = self._backend.read() or {}
        self._spec = QuerySpec.from_dict(data.get(PREFERENCES_KEY))
        logger.debug("Loaded query preferences: %s", self._spec.to_dict())
        return self._spec

    def get(self) -> QuerySpec:
        return self._spec

    def set(self, spec: QuerySpec) -> QuerySpec:
        if spec == self._spec:
            return self._spec
        self._spec = spec
        try:
            self._backend.write({PREFERENCES_KEY: spec.to_dict()})
        except OSError:
            # Keep the in-memory selection; it just won't survive a restart.
            logger.exception("Failed to persist query preferences")
        for listener in list(self._listeners):
            try:
                listener(spec)
            except Exception:
                logger.exception("Preference listener failed")
        return spec

    def update(self, **changes: Any) -> QuerySpec:
        """set() with only some fields changed, e.g. update(search_text="milk")."""
        data = {
            "status_filter": self._spec.status_filter,
            "priority_filter": self._spec.priority_filter,
            "sort_key": self._spec.sort_key,
            "sort_direction": self._spec.sort_direction,
            "search_text": self._spec.search_text,
        }
        unknown = set(changes) - set(data)
        if unknown:
            raise TypeError(f"unknown preference fields: {', '.join(sorted(unknown))}")
        data.update(changes)
        return self.set(QuerySpec(**data))

    def subscribe(self, listener: Callable[[QuerySpec], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
