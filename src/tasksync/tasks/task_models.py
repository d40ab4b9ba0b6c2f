# src/tasksync/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import Any, Mapping

from ..core.errors import ServerError, ValidationError

TaskId = int | str

TEMP_ID_PREFIX = "temp_"

# completedAt for a completed task whose payload carries no timestamp at all.
UNKNOWN_COMPLETION = datetime(1970, 1, 1, tzinfo=UTC)


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_api(cls, raw: Any) -> Priority:
        """Lenient read for server payloads: unknown values become medium."""
        if not raw:
            return cls.MEDIUM
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.MEDIUM

    @classmethod
    def parse(cls, raw: Any) -> Priority:
        """Strict read for client input."""
        if isinstance(raw, Priority):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(
                f"priority must be one of: {', '.join(p.value for p in cls)}",
                field="priority",
            ) from None


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


class MutationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    TOGGLE = "toggle"
    DELETE = "delete"


class StatusFilter(StrEnum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class PriorityFilter(StrEnum):
    ALL = "all"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SortKey(StrEnum):
    DUE_DATE = "dueDate"
    PRIORITY = "priority"
    CREATED_AT = "createdAt"
    TITLE = "title"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


# ---- timestamps ----


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(raw: Any) -> datetime | None:
    """ISO-8601 string (or datetime) -> aware datetime. Naive values are taken as UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        try:
            dt = datetime.fromisoformat(str(raw).strip())
        except ValueError:
            raise ServerError(f"invalid timestamp: {raw!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")


# ---- temporary ids ----


def new_temp_id() -> str:
    """Local id for an optimistic record; replaced by the server id on commit."""
    ms = int(utcnow().timestamp() * 1000)
    return f"{TEMP_ID_PREFIX}{ms}_{uuid.uuid4().hex[:8]}"


def is_temp_id(task_id: Any) -> bool:
    return isinstance(task_id, str) and task_id.startswith(TEMP_ID_PREFIX)


def _clean_title(raw: Any) -> str:
    title = str(raw or "").strip()
    if not title:
        raise ValidationError("title is required", field="title")
    return title


def _clean_description(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _client_timestamp(raw: Any) -> datetime | None:
    try:
        return parse_timestamp(raw)
    except ServerError:
        raise ValidationError(f"invalid date: {raw!r}", field="dueDate") from None


def _pick(payload: Mapping[str, Any], camel: str, snake: str) -> Any:
    if camel in payload:
        return payload[camel]
    return payload.get(snake)


@dataclass(slots=True, frozen=True)
class Task:
    id: TaskId
    title: str
    description: str | None = None
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_api(cls, payload: Any) -> Task:
        if not isinstance(payload, Mapping):
            raise ServerError(f"expected a task object, got {type(payload).__name__}")
        task_id = payload.get("id")
        if task_id is None or task_id == "":
            raise ServerError("task payload is missing 'id'")

        completed = bool(payload.get("completed", False))
        updated_at = parse_timestamp(_pick(payload, "updatedAt", "updated_at"))
        completed_at = parse_timestamp(_pick(payload, "completedAt", "completed_at"))
        created_at = parse_timestamp(_pick(payload, "createdAt", "created_at"))
        if not completed:
            completed_at = None
        elif completed_at is None:
            # Older servers only flip the flag; take the closest timestamp we have.
            completed_at = updated_at or created_at or UNKNOWN_COMPLETION

        return cls(
            id=task_id,
            title=str(payload.get("title") or payload.get("name") or ""),
            description=payload.get("description"),
            completed=completed,
            priority=Priority.from_api(payload.get("priority")),
            due_date=parse_timestamp(_pick(payload, "dueDate", "due_date")),
            completed_at=completed_at,
            created_at=created_at,
            updated_at=updated_at,
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "priority": self.priority.value,
            "dueDate": format_timestamp(self.due_date),
            "completedAt": format_timestamp(self.completed_at),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    def with_completion(self, completed: bool, now: datetime) -> Task:
        """Apply a completion flip keeping completed_at in step with completed."""
        if completed == self.completed:
            return self
        return replace(self, completed=completed, completed_at=now if completed else None)

    def is_overdue(self, now: datetime) -> bool:
        return self.due_date is not None and self.due_date < now and not self.completed


@dataclass(slots=True, frozen=True)
class TaskDraft:
    title: str
    description: str | None = None
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None

    def validated(self) -> TaskDraft:
        return TaskDraft(
            title=_clean_title(self.title),
            description=_clean_description(self.description),
            priority=Priority.parse(self.priority),
            due_date=_client_timestamp(self.due_date),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": self.title, "priority": self.priority.value}
        if self.description is not None:
            payload["description"] = self.description
        if self.due_date is not None:
            payload["dueDate"] = format_timestamp(self.due_date)
        return payload

    def to_task(self, task_id: TaskId) -> Task:
        """Optimistic record: no server timestamps yet."""
        return Task(
            id=task_id,
            title=self.title,
            description=self.description,
            priority=self.priority,
            due_date=self.due_date,
        )


class _Unset(Enum):
    UNSET = "unset"

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset.UNSET

_PATCH_WIRE_NAMES = {
    "title": "title",
    "description": "description",
    "priority": "priority",
    "due_date": "dueDate",
    "completed": "completed",
}


@dataclass(slots=True, frozen=True)
class TaskPatch:
    """
    Partial update. UNSET means "leave as is"; None on an optional field means "clear".
    """

    title: str | _Unset = UNSET
    description: str | None | _Unset = UNSET
    priority: Priority | _Unset = UNSET
    due_date: datetime | None | _Unset = UNSET
    completed: bool | _Unset = UNSET

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in _PATCH_WIRE_NAMES:
            value = getattr(self, name)
            if value is not UNSET:
                out[name] = value
        return out

    def is_empty(self) -> bool:
        return not self.changes()

    def validated(self) -> TaskPatch:
        changes = self.changes()
        if not changes:
            raise ValidationError("nothing to update")
        if "title" in changes:
            changes["title"] = _clean_title(changes["title"])
        if "description" in changes:
            changes["description"] = _clean_description(changes["description"])
        if "priority" in changes:
            changes["priority"] = Priority.parse(changes["priority"])
        if "due_date" in changes:
            changes["due_date"] = _client_timestamp(changes["due_date"])
        if "completed" in changes:
            changes["completed"] = bool(changes["completed"])
        return TaskPatch(**changes)

    def apply(self, task: Task, now: datetime) -> Task:
        changes = self.changes()
        completed = changes.pop("completed", UNSET)
        out = replace(task, **changes) if changes else task
        if completed is not UNSET:
            out = out.with_completion(completed, now)
        return out

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, value in self.changes().items():
            if isinstance(value, datetime):
                value = format_timestamp(value)
            elif isinstance(value, Priority):
                value = value.value
            payload[_PATCH_WIRE_NAMES[name]] = value
        return payload


@dataclass(slots=True)
class PendingMutation:
    """
    One optimistic change waiting for the server.

    snapshot: visible task right before the mutation (None for create)
    optimistic: visible task right after it (None for delete)
    patch: the change itself, re-applied when earlier mutations resolve
    """

    task_id: TaskId
    kind: MutationKind
    snapshot: Task | None
    optimistic: Task | None
    issued_at: datetime
    patch: TaskPatch | None = None

    def rebase(self, base: Task | None, now: datetime) -> Task | None:
        if self.kind is MutationKind.CREATE:
            return self.optimistic
        if self.kind is MutationKind.DELETE or base is None:
            return None
        if self.patch is None:
            return base
        return self.patch.apply(base, now)


@dataclass(slots=True, frozen=True)
class Committed:
    pass


@dataclass(slots=True, frozen=True)
class Pending:
    mutations: tuple[PendingMutation, ...]

    @property
    def kind(self) -> MutationKind:
        return self.mutations[0].kind


EntryState = Committed | Pending


def _coerce(enum_cls: type[StrEnum], raw: Any, field_name: str) -> Any:
    text = str(raw).strip()
    for member in enum_cls:
        if member.value == text or member.value.lower() == text.lower():
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"{field_name} must be one of: {choices}", field=field_name)


_QUERY_ENUMS: dict[str, type[StrEnum]] = {
    "status_filter": StatusFilter,
    "priority_filter": PriorityFilter,
    "sort_key": SortKey,
    "sort_direction": SortDirection,
}


@dataclass(slots=True, frozen=True)
class QuerySpec:
    status_filter: StatusFilter = StatusFilter.ALL
    priority_filter: PriorityFilter = PriorityFilter.ALL
    sort_key: SortKey = SortKey.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC
    search_text: str = ""

    def __post_init__(self) -> None:
        # Callers may pass plain strings ("overdue", "dueDate"); store the enums.
        for name, enum_cls in _QUERY_ENUMS.items():
            value = getattr(self, name)
            if not isinstance(value, enum_cls):
                object.__setattr__(self, name, _coerce(enum_cls, value, name))
        if not isinstance(self.search_text, str):
            raise ValidationError("search text must be a string", field="search_text")

    def to_dict(self) -> dict[str, str]:
        return {
            "statusFilter": self.status_filter.value,
            "priorityFilter": self.priority_filter.value,
            "sortKey": self.sort_key.value,
            "sortDirection": self.sort_direction.value,
            "searchText": self.search_text,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> QuerySpec:
        """Tolerant read: anything unknown falls back to the default for that field."""
        if not isinstance(data, Mapping):
            return cls()
        default = cls()

        def pick(enum_cls, key: str, fallback):
            raw = data.get(key)
            try:
                return enum_cls(raw)
            except ValueError:
                return fallback

        search = data.get("searchText", "")
        return cls(
            status_filter=pick(StatusFilter, "statusFilter", default.status_filter),
            priority_filter=pick(PriorityFilter, "priorityFilter", default.priority_filter),
            sort_key=pick(SortKey, "sortKey", default.sort_key),
            sort_direction=pick(SortDirection, "sortDirection", default.sort_direction),
            search_text=search if isinstance(search, str) else "",
        )


@dataclass(slots=True, frozen=True)
class MutationFailure:
    """Last surfaced failure, kept for display until the next attempt."""

    action: str
    task_id: TaskId | None
    error: Exception
    message: str
    at: datetime = field(default_factory=utcnow)
