# src/tasksync/core/state.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Coroutine

from ..preferences.store import PreferenceStore
from ..tasks.query_engine import derive
from ..tasks.sync_coordinator import SyncCoordinator
from ..tasks.task_models import Task, utcnow
from ..tasks.task_store import TaskStore
from .ports import TaskRepo

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    repository: TaskRepo
    coordinator: SyncCoordinator
    store: TaskStore
    preferences: PreferenceStore

    clock: Callable[[], datetime] = utcnow
    background: set[asyncio.Task] = field(default_factory=set)

    def visible_tasks(self) -> list[Task]:
        """What the presentation layer should show right now."""
        return derive(self.store.get_all(), self.preferences.get(), self.clock())

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Run a store call in the background so optimistic state is visible at once.

        Failures are already recorded on the store (last_error + ROLLED_BACK event),
        so the task's exception is only logged here.
        """
        task = asyncio.get_running_loop().create_task(coro)
        self.background.add(task)

        def _done(t: asyncio.Task) -> None:
            self.background.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.debug("Background store call failed: %s", exc)

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        while self.background:
            await asyncio.gather(*list(self.background), return_exceptions=True)
        await self.coordinator.wait_idle()
