# src/tasksync/tasks/query_engine.py

"""
Visible-list derivation.

derive() is a pure function of (tasks, spec, now): no state, no clock reads,
so identical inputs always give the identical sequence (safe to memoize).

Ordering policy:
- filters run in order status -> priority -> search,
- sort is stable on the sort key, ties broken by id ascending
  (integer ids first, then string ids such as temporary ones),
- priority is ordinal: low < medium < high,
- a missing dueDate / createdAt sorts after every defined value when
  ascending and before every defined value when descending.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .task_models import (
    PriorityFilter,
    QuerySpec,
    SortDirection,
    SortKey,
    StatusFilter,
    Task,
    TaskId,
)


def _id_key(task_id: TaskId) -> tuple[int, int, str]:
    if isinstance(task_id, int) and not isinstance(task_id, bool):
        return (0, task_id, "")
    return (1, 0, str(task_id))


def _optional_ts_key(value: datetime | None) -> tuple[bool, float]:
    # (missing, timestamp): missing values compare greater than any defined one.
    if value is None:
        return (True, 0.0)
    return (False, value.timestamp())


def _sort_key(key: SortKey):
    if key is SortKey.DUE_DATE:
        return lambda t: _optional_ts_key(t.due_date)
    if key is SortKey.CREATED_AT:
        return lambda t: _optional_ts_key(t.created_at)
    if key is SortKey.PRIORITY:
        return lambda t: t.priority.rank
    if key is SortKey.TITLE:
        return lambda t: t.title.casefold()
    raise ValueError(f"unknown sort key: {key!r}")


def matches_status(task: Task, status: StatusFilter, now: datetime) -> bool:
    if status is StatusFilter.ALL:
        return True
    if status is StatusFilter.ACTIVE:
        return not task.completed
    if status is StatusFilter.COMPLETED:
        return task.completed
    if status is StatusFilter.OVERDUE:
        return task.is_overdue(now)
    raise ValueError(f"unknown status filter: {status!r}")


def matches_priority(task: Task, priority: PriorityFilter) -> bool:
    if priority is PriorityFilter.ALL:
        return True
    return task.priority.value == priority.value


def matches_search(task: Task, needle: str) -> bool:
    """Case-insensitive substring match over title and description."""
    if not needle:
        return True
    if needle in task.title.casefold():
        return True
    return bool(task.description) and needle in task.description.casefold()


def derive(tasks: Iterable[Task], spec: QuerySpec, now: datetime) -> list[Task]:
    needle = spec.search_text.strip().casefold()

    visible = [
        t
        for t in tasks
        if matches_status(t, spec.status_filter, now)
        and matches_priority(t, spec.priority_filter)
        and matches_search(t, needle)
    ]

    # Two stable passes: id ascending first, then the sort key. reverse=True keeps
    # equal elements in their existing order, so ties stay id-ascending for desc too.
    visible.sort(key=lambda t: _id_key(t.id))
    visible.sort(key=_sort_key(spec.sort_key), reverse=spec.sort_direction is SortDirection.DESC)
    return visible


def query_params(spec: QuerySpec) -> dict[str, Any]:
    """Server-side mirror of a QuerySpec for GET /api/tasks (non-default values only)."""
    default = QuerySpec()
    params: dict[str, Any] = {}
    if spec.sort_key is not default.sort_key or spec.sort_direction is not default.sort_direction:
        params["sort"] = spec.sort_key.value
        params["order"] = spec.sort_direction.value
    if spec.status_filter is not StatusFilter.ALL:
        params["filter"] = spec.status_filter.value
    if spec.priority_filter is not PriorityFilter.ALL:
        params["priority"] = spec.priority_filter.value
    if spec.search_text.strip():
        params["search"] = spec.search_text.strip()
    return params
