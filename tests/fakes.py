# tests/fakes.py

from __future__ import annotations

import asyncio
import contextlib
import itertools
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from tasksync.core.errors import NotFoundError
from tasksync.tasks.task_models import QuerySpec, Task, TaskDraft, TaskId, TaskPatch

SERVER_EPOCH = datetime(2024, 1, 1, tzinfo=UTC)
LOCAL_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class FakeTaskServer:
    """
    In-memory TaskRepo that behaves like the reference server.

    - `calls` records every request in the order it reached the server
    - `hold(op, task_id)` returns an Event; the next matching request waits on it
    - `fail(op, exc, task_id)` makes the next matching request raise `exc`
    - `hold_reply(op, task_id)` returns an Event; the next matching mutation is
      applied at once but its response waits on it (stored, not yet acknowledged)

    Mutations are applied only after their gate opens, so a held request is
    "in flight": sent but not yet processed.
    """

    def __init__(self, tasks: list[Task] | None = None, *, start_id: int = 1) -> None:
        self.tasks: dict[TaskId, Task] = {t.id: t for t in tasks or []}
        self._next_id = start_id
        self._ticks = itertools.count()
        self.calls: list[tuple[str, TaskId | None]] = []
        self._gates: dict[tuple[str, TaskId | None], deque[asyncio.Event]] = {}
        self._failures: dict[tuple[str, TaskId | None], deque[Exception]] = {}
        self._reply_gates: dict[tuple[str, TaskId | None], deque[asyncio.Event]] = {}
        # Requests per task id currently inside the server, and the highest count seen.
        self.active: Counter = Counter()
        self.peak_active: Counter = Counter()

    # ---- test controls ----

    def now(self) -> datetime:
        return SERVER_EPOCH + timedelta(seconds=next(self._ticks))

    def seed(self, task: Task) -> Task:
        self.tasks[task.id] = task
        if isinstance(task.id, int) and task.id >= self._next_id:
            self._next_id = task.id + 1
        return task

    def hold(self, op: str, task_id: TaskId | None = None) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates.setdefault((op, task_id), deque()).append(gate)
        return gate

    def fail(self, op: str, exc: Exception, task_id: TaskId | None = None) -> None:
        self._failures.setdefault((op, task_id), deque()).append(exc)

    def hold_reply(self, op: str, task_id: TaskId | None = None) -> asyncio.Event:
        gate = asyncio.Event()
        self._reply_gates.setdefault((op, task_id), deque()).append(gate)
        return gate

    def _take(self, registry: dict, op: str, task_id: TaskId | None) -> Any:
        for key in ((op, task_id), (op, None)):
            queue = registry.get(key)
            if queue:
                item = queue.popleft()
                if not queue:
                    del registry[key]
                return item
        return None

    async def _enter(self, op: str, task_id: TaskId | None = None) -> None:
        self.calls.append((op, task_id))
        gate = self._take(self._gates, op, task_id)
        if gate is not None:
            await gate.wait()
        exc = self._take(self._failures, op, task_id)
        if exc is not None:
            raise exc

    async def _reply(self, op: str, task_id: TaskId | None = None) -> None:
        gate = self._take(self._reply_gates, op, task_id)
        if gate is not None:
            await gate.wait()

    @contextlib.contextmanager
    def _tracked(self, task_id: TaskId):
        self.active[task_id] += 1
        self.peak_active[task_id] = max(self.peak_active[task_id], self.active[task_id])
        try:
            yield
        finally:
            self.active[task_id] -= 1

    def _existing(self, task_id: TaskId) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"task {task_id} not found", task_id=task_id)
        return task

    # ---- TaskRepo ----

    async def list(self, query: QuerySpec | None = None) -> list[Task]:
        # Snapshot before the gate: a held list() returns what the server had when asked.
        snapshot = [self.tasks[k] for k in sorted(self.tasks, key=str)]
        await self._enter("list")
        return snapshot

    async def create(self, draft: TaskDraft) -> Task:
        await self._enter("create")
        now = self.now()
        task = Task(
            id=self._next_id,
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            due_date=draft.due_date,
            created_at=now,
            updated_at=now,
        )
        self._next_id += 1
        self.tasks[task.id] = task
        await self._reply("create")
        return task

    async def update(self, task_id: TaskId, patch: TaskPatch) -> Task:
        with self._tracked(task_id):
            await self._enter("update", task_id)
            now = self.now()
            task = replace(patch.apply(self._existing(task_id), now), updated_at=now)
            self.tasks[task_id] = task
            await self._reply("update", task_id)
            return task

    async def toggle_complete(self, task_id: TaskId, completed: bool) -> Task:
        await self._enter("toggle", task_id)
        now = self.now()
        task = replace(self._existing(task_id).with_completion(completed, now), updated_at=now)
        self.tasks[task_id] = task
        return task

    async def remove(self, task_id: TaskId) -> None:
        await self._enter("remove", task_id)
        self._existing(task_id)
        del self.tasks[task_id]


class SequentialTempIds:
    """Deterministic temporary ids: temp_1, temp_2, ..."""

    def __init__(self) -> None:
        self._n = itertools.count(1)

    def __call__(self) -> str:
        return f"temp_{next(self._n)}"


@dataclass(slots=True)
class RecordingListener:
    events: list[Any] = field(default_factory=list)

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)
