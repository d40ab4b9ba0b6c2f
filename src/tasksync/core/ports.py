# src/tasksync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The store depends on Protocols instead of concrete implementations.
This keeps the transport and the preference medium swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import QuerySpec, Task, TaskDraft, TaskId, TaskPatch


class TaskRepo(Protocol):
    """
    Remote task API. One network round trip per call, no retries, no state.

    Raises ValidationError / NotFoundError / ServerError / NetworkError.
    """

    async def list(self, query: QuerySpec | None = None) -> list[Task]: ...
    async def create(self, draft: TaskDraft) -> Task: ...
    async def update(self, task_id: TaskId, patch: TaskPatch) -> Task: ...
    async def toggle_complete(self, task_id: TaskId, completed: bool) -> Task: ...
    async def remove(self, task_id: TaskId) -> None: ...


class PreferenceBackend(Protocol):
    """Storage medium for the last QuerySpec (a JSON file, memory, ...)."""

    def read(self) -> dict[str, Any] | None: ...
    def write(self, data: dict[str, Any]) -> None: ...

