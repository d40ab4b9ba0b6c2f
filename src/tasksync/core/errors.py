# src/tasksync/core/errors.py

"""
Error taxonomy shared by the repository, the coordinator and the store.

- ValidationError: client-correctable (empty title, bad priority...). Never retried.
- NotFoundError: the task vanished server-side. Never retried.
- ServerError: 5xx or malformed payload. Retryable.
- NetworkError: transport failure / timeout. Propagates like ServerError.
"""

from __future__ import annotations

from typing import Any


class TaskSyncError(Exception):
    """Base class for every failure surfaced by the sync engine."""

    retryable: bool = False


class ValidationError(TaskSyncError):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.status_code = status_code


class NotFoundError(TaskSyncError):
    def __init__(self, message: str, *, task_id: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class ServerError(TaskSyncError):
    retryable = True

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(ServerError):
    """Transport-level failure (connection refused, timeout, reset...)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=None)


class MutationCancelled(TaskSyncError):
    """A queued mutation was dropped before it was sent (superseded by a delete)."""


_ACTION_LABELS = {
    "create": "Error adding task",
    "update": "Error updating task",
    "toggle": "Error updating task",
    "delete": "Error deleting task",
    "refresh": "Failed to fetch tasks",
}


def friendly_error_message(action: str, exc: BaseException) -> str:
    """
    User-facing text for a failed operation.

    Keeps the raw exception out of the UI while still showing the
    validation detail (which the user can act on).
    """
    label = _ACTION_LABELS.get(action, "Operation failed")

    if isinstance(exc, ValidationError):
        if exc.field:
            return f"{label}: {exc.field}: {exc.message}"
        return f"{label}: {exc.message}"
    if isinstance(exc, NotFoundError):
        return f"{label}: the task no longer exists."
    if isinstance(exc, NetworkError):
        return f"{label}: the server is unreachable. Try again."
    if isinstance(exc, ServerError):
        return f"{label}: server error. Try again."
    return f"{label}."
