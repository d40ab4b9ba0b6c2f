# src/tasksync/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.errors import TaskSyncError, ValidationError
from ..core.state import AppState
from ..tasks.task_models import (
    Priority,
    PriorityFilter,
    SortDirection,
    SortKey,
    StatusFilter,
    Task,
    TaskDraft,
    TaskId,
    TaskPatch,
    parse_timestamp,
)
from ..tasks.task_store import LoadState

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _parse_task_id(state: AppState, raw: str) -> TaskId:
    """Numeric ids are server ids; anything else (temp ids, uuids) is kept as text."""
    if raw.isdigit() and state.store.get(int(raw)) is not None:
        return int(raw)
    return raw


def _parse_due(raw: str) -> datetime | None:
    if raw.lower() in ("none", "-", ""):
        return None
    try:
        return parse_timestamp(raw)
    except TaskSyncError:
        raise ValidationError(f"invalid date: {raw!r} (use YYYY-MM-DD)", field="dueDate") from None


def _fmt_date(dt: datetime | None) -> str:
    return dt.astimezone().strftime("%Y-%m-%d") if dt else "-"


def format_task(state: AppState, task: Task) -> str:
    mark = "x" if task.completed else " "
    flags = []
    if task.due_date is not None:
        flags.append(f"due {_fmt_date(task.due_date)}")
    if task.is_overdue(state.clock()):
        flags.append("OVERDUE")
    if state.store.is_pending(task.id):
        flags.append("saving...")
    extra = f" [{', '.join(flags)}]" if flags else ""
    return f"[{mark}] {task.id}  {task.title}  ({task.priority.value}){extra}"


# ---- handlers ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str]) -> str:
    spec = state.preferences.get()
    err = state.store.last_error
    base_url = getattr(state.settings, "api_base_url", "?")
    return (
        "Status:\n"
        f"  API: {base_url}\n"
        f"  Load state: {state.store.load_state.value}\n"
        f"  Tasks: {len(state.store.get_all())} (pending mutations: {len(state.store.pending_mutations())})\n"
        f"  Query: {spec.status_filter.value}/{spec.priority_filter.value} "
        f"sort={spec.sort_key.value} {spec.sort_direction.value} search={spec.search_text!r}\n"
        f"  Last error: {err.message if err else '-'}"
    )


async def cmd_ls(state: AppState, args: list[str]) -> str:
    if state.store.load_state is LoadState.LOADING and not state.store.get_all():
        return "Loading data..."
    if state.store.load_state is LoadState.FAILED and not state.store.get_all():
        err = state.store.last_error
        return err.message if err else "Failed to fetch tasks."

    tasks = state.visible_tasks()
    if not tasks:
        return "No tasks found. Add some with /add <title>."
    return "\n".join(format_task(state, t) for t in tasks)


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add Buy milk !high due:2024-01-02
    """
    priority = Priority.MEDIUM
    due = None
    words: list[str] = []
    for arg in args:
        if arg.startswith("!") and len(arg) > 1:
            priority = Priority.parse(arg[1:])
        elif arg.lower().startswith("due:"):
            due = _parse_due(arg[4:])
        else:
            words.append(arg)

    draft = TaskDraft(title=" ".join(words), priority=priority, due_date=due)
    # Validate up front so an empty title never shows up as an optimistic row.
    draft.validated()
    state.spawn(state.store.create(draft))
    return f"Adding: {draft.title.strip()}"


async def cmd_edit(state: AppState, args: list[str]) -> str:
    """
    /edit <id> title <text...>
    /edit <id> desc <text...>
    /edit <id> priority <low|medium|high>
    /edit <id> due <YYYY-MM-DD|none>
    """
    if len(args) < 2:
        return "Usage: /edit <id> title|desc|priority|due <value>"

    task_id = _parse_task_id(state, args[0])
    field_name = args[1].lower()
    value = " ".join(args[2:])

    if field_name == "title":
        patch = TaskPatch(title=value)
    elif field_name in ("desc", "description"):
        patch = TaskPatch(description=value or None)
    elif field_name == "priority":
        patch = TaskPatch(priority=Priority.parse(value))
    elif field_name == "due":
        patch = TaskPatch(due_date=_parse_due(value))
    else:
        return "Usage: /edit <id> title|desc|priority|due <value>"

    patch.validated()
    if state.store.get(task_id) is None:
        return f"No task with id {task_id}."
    state.spawn(state.store.update(task_id, patch))
    return f"Updating task {task_id}."


async def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <id>"
    task_id = _parse_task_id(state, args[0])
    task = state.store.get(task_id)
    if task is None:
        return f"No task with id {task_id}."
    state.spawn(state.store.toggle_complete(task_id))
    return f"Task {task_id} marked {'active' if task.completed else 'done'}."


async def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <id>"
    task_id = _parse_task_id(state, args[0])
    if state.store.get(task_id) is None:
        return f"No task with id {task_id}."
    state.spawn(state.store.remove(task_id))
    return f"Deleting task {task_id}."


async def cmd_filter(state: AppState, args: list[str]) -> str:
    """
    /filter                      -> show current filter
    /filter <all|active|completed|overdue> [all|low|medium|high]
    """
    spec = state.preferences.get()
    if not args:
        return f"Filter: status={spec.status_filter.value} priority={spec.priority_filter.value}"
    try:
        status = StatusFilter(args[0].lower())
        priority = PriorityFilter(args[1].lower()) if len(args) > 1 else spec.priority_filter
    except ValueError:
        return "Usage: /filter all|active|completed|overdue [all|low|medium|high]"
    state.preferences.update(status_filter=status, priority_filter=priority)
    return f"Filter: status={status.value} priority={priority.value}"


async def cmd_sort(state: AppState, args: list[str]) -> str:
    spec = state.preferences.get()
    if not args:
        return f"Sort: {spec.sort_key.value} {spec.sort_direction.value}"
    keys = {k.value.lower(): k for k in SortKey}
    key = keys.get(args[0].lower())
    if key is None:
        return "Usage: /sort dueDate|priority|createdAt|title [asc|desc]"
    try:
        direction = SortDirection(args[1].lower()) if len(args) > 1 else spec.sort_direction
    except ValueError:
        return "Usage: /sort dueDate|priority|createdAt|title [asc|desc]"
    state.preferences.update(sort_key=key, sort_direction=direction)
    return f"Sort: {key.value} {direction.value}"


async def cmd_search(state: AppState, args: list[str]) -> str:
    text = " ".join(args).strip()
    state.preferences.update(search_text=text)
    return f"Search: {text!r}" if text else "Search cleared."


async def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("Loading data...")
    try:
        tasks = await state.store.refresh()
    except TaskSyncError:
        err = state.store.last_error
        return err.message if err else "Failed to fetch tasks."
    return f"Loaded {len(tasks)} tasks."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show API, load state and current query.")
registry.register("ls", cmd_ls, help_text="List visible tasks (filtered/sorted).", aliases=["list"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [!low|!medium|!high] [due:YYYY-MM-DD].")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> title|desc|priority|due <value>.")
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.", aliases=["toggle"])
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id>.", aliases=["del", "delete"])
registry.register("filter", cmd_filter, help_text="Filter: /filter <status> [priority].")
registry.register("sort", cmd_sort, help_text="Sort: /sort <key> [asc|desc].")
registry.register("search", cmd_search, help_text="Search title/description: /search <text> (empty clears).")
registry.register("refresh", cmd_refresh, help_text="Reload tasks from the server.")
