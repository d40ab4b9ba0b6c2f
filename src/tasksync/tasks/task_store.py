# src/tasksync/tasks/task_store.py

from __future__ import annotations

import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Callable

from ..core.errors import (
    MutationCancelled,
    NotFoundError,
    TaskSyncError,
    ValidationError,
    friendly_error_message,
)
from ..core.ports import TaskRepo
from .sync_coordinator import SyncCoordinator
from .task_models import (
    Committed,
    EntryState,
    MutationFailure,
    MutationKind,
    Pending,
    PendingMutation,
    Task,
    TaskDraft,
    TaskId,
    TaskPatch,
    is_temp_id,
    new_temp_id,
    utcnow,
)

logger = logging.getLogger(__name__)

ALIAS_RETENTION = 256


class LoadState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ChangeKind(StrEnum):
    PROPOSED = "proposed"  # optimistic change applied locally
    COMMITTED = "committed"  # server confirmed a mutation
    ROLLED_BACK = "rolled_back"  # mutation failed, local state restored
    DROPPED = "dropped"  # queued mutation superseded before sending
    LOADING = "loading"
    REFRESHED = "refreshed"
    LOAD_FAILED = "load_failed"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    kind: ChangeKind
    task_id: TaskId | None = None
    failure: MutationFailure | None = None


ChangeListener = Callable[[ChangeEvent], None]


@dataclass(slots=True)
class _Entry:
    """
    One task slot.

    confirmed: last server-confirmed value (None while a create is pending)
    pending: optimistic mutations in issue order; the head is the one in flight
    visible: confirmed with every pending mutation re-applied
    """

    position: int
    confirmed: Task | None = None
    confirmed_version: int = 0
    pending: list[PendingMutation] = field(default_factory=list)
    visible: Task | None = None

    def state(self) -> EntryState:
        if self.pending:
            return Pending(tuple(self.pending))
        return Committed()


class TaskStore:
    """
    Authoritative in-memory task collection kept in sync with a TaskRepo.

    Every mutation is applied optimistically, sent through the SyncCoordinator,
    then either committed (server value wins) or rolled back to
    "as if it was never attempted". Reconciliation is a rebase: the visible
    value of a task is its last confirmed value with all still-pending
    mutations re-applied in order.

    Failures are recorded in `last_error` and re-raised to the caller.
    """

    def __init__(
        self,
        repository: TaskRepo,
        coordinator: SyncCoordinator | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        temp_ids: Callable[[], str] = new_temp_id,
        alias_retention: int = ALIAS_RETENTION,
    ) -> None:
        self._repo = repository
        self._sync = coordinator or SyncCoordinator()
        self._clock = clock
        self._temp_ids = temp_ids

        self._entries: dict[TaskId, _Entry] = {}
        # temp id -> server id. Pinned while a pending mutation still carries the
        # temp id, then kept for the most recent `alias_retention` creates only.
        self._aliases: OrderedDict[TaskId, TaskId] = OrderedDict()
        self._alias_retention = max(0, int(alias_retention))
        self._positions = itertools.count()

        # Bumped on every server confirmation; lets refresh() skip newer local truth.
        self._version = 0
        self._confirmed_deletes: dict[TaskId, int] = {}
        self._refresh_ticket = 0
        # ticket -> version at issue, for every refresh still waiting on list()
        self._refreshes: dict[int, int] = {}

        self._listeners: list[ChangeListener] = []
        self.load_state = LoadState.IDLE
        self.last_error: MutationFailure | None = None

    # ---- read side ----

    def get_all(self) -> list[Task]:
        entries = sorted(self._entries.values(), key=lambda e: e.position)
        return [e.visible for e in entries if e.visible is not None]

    def get(self, task_id: TaskId) -> Task | None:
        entry = self._entries.get(self.resolve_id(task_id))
        return entry.visible if entry else None

    def state_of(self, task_id: TaskId) -> EntryState | None:
        entry = self._entries.get(self.resolve_id(task_id))
        return entry.state() if entry else None

    def is_pending(self, task_id: TaskId) -> bool:
        return isinstance(self.state_of(task_id), Pending)

    def pending_mutations(self) -> list[PendingMutation]:
        out: list[PendingMutation] = []
        for entry in sorted(self._entries.values(), key=lambda e: e.position):
            out.extend(entry.pending)
        return out

    def resolve_id(self, task_id: TaskId) -> TaskId:
        """Map a temporary id to its server id once the create was confirmed."""
        return self._aliases.get(task_id, task_id)

    # ---- subscriptions ----

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: ChangeKind, task_id: TaskId | None = None) -> None:
        failure = self.last_error if kind in (ChangeKind.ROLLED_BACK, ChangeKind.LOAD_FAILED) else None
        event = ChangeEvent(kind=kind, task_id=task_id, failure=failure)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed on %s", kind.value)

    def clear_error(self) -> None:
        self.last_error = None

    # ---- mutations ----

    async def create(self, draft: TaskDraft) -> Task:
        self.last_error = None
        try:
            draft = draft.validated()
        except ValidationError as exc:
            self._record_failure(MutationKind.CREATE.value, None, exc)
            raise

        temp_id = self._temp_ids()
        optimistic = draft.to_task(temp_id)
        mutation = PendingMutation(
            task_id=temp_id,
            kind=MutationKind.CREATE,
            snapshot=None,
            optimistic=optimistic,
            issued_at=self._clock(),
        )
        entry = _Entry(position=next(self._positions), pending=[mutation])
        self._entries[temp_id] = entry
        self._recompute(entry)
        logger.debug("Optimistic create temp_id=%s title=%r", temp_id, draft.title)
        self._notify(ChangeKind.PROPOSED, temp_id)

        async def send() -> Task:
            return await self._repo.create(draft)

        def on_success(task: Task) -> Task:
            return self._commit_create(temp_id, mutation, task)

        def on_failure(exc: Exception) -> None:
            self._rollback(mutation, exc)

        return await self._sync.submit(
            temp_id,
            MutationKind.CREATE,
            send,
            on_success=on_success,
            on_failure=on_failure,
        )

    async def update(self, task_id: TaskId, patch: TaskPatch) -> Task | None:
        """Returns the confirmed task, or None if a later delete superseded the update."""
        self.last_error = None
        try:
            patch = patch.validated()
        except ValidationError as exc:
            self._record_failure(MutationKind.UPDATE.value, task_id, exc)
            raise
        return await self._patch(task_id, MutationKind.UPDATE, patch)

    async def toggle_complete(self, task_id: TaskId) -> Task | None:
        self.last_error = None
        current = self._require_visible(task_id, MutationKind.TOGGLE)
        # Send the target state rather than "flip" so a re-based toggle stays what the user saw.
        return await self._patch(task_id, MutationKind.TOGGLE, TaskPatch(completed=not current.completed))

    async def remove(self, task_id: TaskId) -> None:
        self.last_error = None
        before = self._require_visible(task_id, MutationKind.DELETE)
        key = self.resolve_id(task_id)
        entry = self._entries[key]

        mutation = PendingMutation(
            task_id=key,
            kind=MutationKind.DELETE,
            snapshot=before,
            optimistic=None,
            issued_at=self._clock(),
        )
        entry.pending.append(mutation)
        self._recompute(entry)
        logger.debug("Optimistic delete task=%s", key)
        self._notify(ChangeKind.PROPOSED, key)

        async def send() -> None:
            target = self.resolve_id(key)
            if is_temp_id(target):
                # The create never reached the server; nothing to delete remotely.
                return None
            await self._repo.remove(target)
            return None

        def on_success(_: None) -> None:
            self._commit_delete(mutation)

        def on_failure(exc: Exception) -> None:
            self._rollback(mutation, exc)

        await self._sync.submit(
            key,
            MutationKind.DELETE,
            send,
            on_success=on_success,
            on_failure=on_failure,
        )

    async def refresh(self) -> list[Task]:
        """
        Replace the collection with a fresh list() result.

        The most recently issued refresh wins: results (and errors) of earlier
        refreshes that complete later are ignored.
        """
        self.last_error = None
        self._refresh_ticket += 1
        ticket = self._refresh_ticket
        issued_version = self._version

        self._refreshes[ticket] = issued_version
        self.load_state = LoadState.LOADING
        self._notify(ChangeKind.LOADING)

        try:
            tasks = await self._repo.list()
        except TaskSyncError as exc:
            self._end_refresh(ticket)
            if ticket != self._refresh_ticket:
                logger.debug("Ignoring failure of superseded refresh #%d: %s", ticket, exc)
                return self.get_all()
            self.load_state = LoadState.FAILED
            self._record_failure("refresh", None, exc)
            self._notify(ChangeKind.LOAD_FAILED)
            raise

        if ticket != self._refresh_ticket:
            self._end_refresh(ticket)
            logger.debug("Ignoring result of superseded refresh #%d", ticket)
            return self.get_all()

        self._apply_snapshot(tasks, issued_version)
        self._end_refresh(ticket)
        self.load_state = LoadState.READY
        logger.info("Refreshed %d tasks", len(tasks))
        self._notify(ChangeKind.REFRESHED)
        return self.get_all()

    # ---- internals: issuing ----

    def _require_visible(self, task_id: TaskId, kind: MutationKind) -> Task:
        entry = self._entries.get(self.resolve_id(task_id))
        if entry is None or entry.visible is None:
            exc = NotFoundError(f"task {task_id} does not exist", task_id=task_id)
            self._record_failure(kind.value, task_id, exc)
            raise exc
        return entry.visible

    async def _patch(self, task_id: TaskId, kind: MutationKind, patch: TaskPatch) -> Task | None:
        before = self._require_visible(task_id, kind)
        key = self.resolve_id(task_id)
        entry = self._entries[key]

        now = self._clock()
        mutation = PendingMutation(
            task_id=key,
            kind=kind,
            snapshot=before,
            optimistic=patch.apply(before, now),
            issued_at=now,
            patch=patch,
        )
        entry.pending.append(mutation)
        self._recompute(entry)
        logger.debug("Optimistic %s task=%s changes=%s", kind.value, key, patch.changes())
        self._notify(ChangeKind.PROPOSED, key)

        async def send() -> Task:
            target = self.resolve_id(key)
            if is_temp_id(target):
                raise NotFoundError(f"task {task_id} was never created", task_id=task_id)
            if kind is MutationKind.TOGGLE:
                return await self._repo.toggle_complete(target, bool(patch.completed))
            return await self._repo.update(target, patch)

        def on_success(task: Task) -> Task | None:
            return self._commit_update(mutation, task)

        def on_failure(exc: Exception) -> None:
            self._rollback(mutation, exc)

        def on_drop() -> None:
            self._discard(mutation)

        try:
            return await self._sync.submit(
                key,
                kind,
                send,
                on_success=on_success,
                on_failure=on_failure,
                on_drop=on_drop,
            )
        except MutationCancelled:
            logger.info("%s for task=%s dropped before sending (task deleted)", kind.value, key)
            return None

    # ---- internals: reconciliation ----

    def _entry_for(self, mutation: PendingMutation) -> tuple[TaskId, _Entry | None]:
        key = self.resolve_id(mutation.task_id)
        return key, self._entries.get(key)

    def _recompute(self, entry: _Entry) -> None:
        value = entry.confirmed
        now = self._clock()
        for mutation in entry.pending:
            value = mutation.rebase(value, now)
        entry.visible = value

    def _confirm(self, entry: _Entry, task: Task | None) -> None:
        self._version += 1
        entry.confirmed = task
        entry.confirmed_version = self._version

    def _commit_create(self, temp_id: TaskId, mutation: PendingMutation, task: Task) -> Task:
        entry = self._entries.pop(temp_id, None)
        if entry is None:
            # Should not happen: creates cannot be dropped. Keep the server record anyway.
            entry = _Entry(position=next(self._positions))
        if mutation in entry.pending:
            entry.pending.remove(mutation)

        duplicate = self._entries.pop(task.id, None)
        if duplicate is not None:
            # A refresh brought the record in under its server id anyway; keep the optimistic slot.
            entry.pending.extend(duplicate.pending)

        self._confirm(entry, task)
        self._aliases[temp_id] = task.id
        self._entries[task.id] = entry
        self._sync.rekey(temp_id, task.id)
        self._recompute(entry)
        self._prune_aliases()
        logger.info("Task created temp_id=%s -> id=%s", temp_id, task.id)
        self._notify(ChangeKind.COMMITTED, task.id)
        return task

    def _commit_update(self, mutation: PendingMutation, task: Task) -> Task | None:
        key, entry = self._entry_for(mutation)
        if entry is None:
            return task
        if mutation in entry.pending:
            entry.pending.remove(mutation)
        self._confirm(entry, task)
        self._recompute(entry)
        self._prune_aliases()
        logger.debug("Committed %s task=%s", mutation.kind.value, key)
        self._notify(ChangeKind.COMMITTED, key)
        return task

    def _commit_delete(self, mutation: PendingMutation) -> None:
        key, entry = self._entry_for(mutation)
        self._version += 1
        if not is_temp_id(key):
            self._confirmed_deletes[key] = self._version
        if entry is not None:
            del self._entries[key]
        self._prune_deletes()
        self._prune_aliases()
        logger.info("Task deleted id=%s", key)
        self._notify(ChangeKind.COMMITTED, key)

    def _rollback(self, mutation: PendingMutation, exc: Exception) -> None:
        key, entry = self._entry_for(mutation)
        if entry is not None:
            if mutation in entry.pending:
                entry.pending.remove(mutation)
            if isinstance(exc, NotFoundError):
                # Gone server-side: discard the record rather than restore it.
                entry.confirmed = None
            if entry.confirmed is None and not entry.pending:
                del self._entries[key]
            else:
                self._recompute(entry)
        self._prune_aliases()

        logger.warning("Rolled back %s task=%s: %s", mutation.kind.value, key, exc)
        self._record_failure(mutation.kind.value, key, exc)
        self._notify(ChangeKind.ROLLED_BACK, key)

    def _discard(self, mutation: PendingMutation) -> None:
        key, entry = self._entry_for(mutation)
        if entry is None:
            return
        if mutation in entry.pending:
            entry.pending.remove(mutation)
        self._recompute(entry)
        self._prune_aliases()
        self._notify(ChangeKind.DROPPED, key)

    def _apply_snapshot(self, tasks: list[Task], issued_version: int) -> None:
        incoming: dict[TaskId, Task] = {}
        for task in tasks:
            incoming[task.id] = task

        for key, entry in list(self._entries.items()):
            fresh = incoming.pop(key, None)
            if entry.confirmed_version > issued_version:
                # Confirmed by a mutation after this refresh was issued: local is newer.
                continue
            if fresh is not None:
                entry.confirmed = fresh
                self._recompute(entry)
            elif not entry.pending:
                del self._entries[key]

        # Creates the server may already have stored but not acknowledged yet.
        unacked = [
            e.pending[0].optimistic
            for e in self._entries.values()
            if e.confirmed is None and e.pending and e.pending[0].kind is MutationKind.CREATE
        ]

        for task_id, task in incoming.items():
            deleted_at = self._confirmed_deletes.get(task_id)
            if deleted_at is not None and deleted_at > issued_version:
                continue
            twin = next((t for t in unacked if t is not None and _same_content(t, task)), None)
            if twin is not None:
                # Shown through the optimistic entry until the create's response lands.
                unacked.remove(twin)
                logger.debug("Refresh: id=%s held back as the unacknowledged create %s", task_id, twin.id)
                continue
            entry = _Entry(position=next(self._positions), confirmed=task)
            self._recompute(entry)
            self._entries[task_id] = entry

    def _end_refresh(self, ticket: int) -> None:
        self._refreshes.pop(ticket, None)
        self._prune_deletes()

    def _prune_deletes(self) -> None:
        # A confirmed delete only matters to refreshes issued before it.
        if not self._refreshes:
            self._confirmed_deletes.clear()
            return
        oldest = min(self._refreshes.values())
        for task_id, version in list(self._confirmed_deletes.items()):
            if version <= oldest:
                del self._confirmed_deletes[task_id]

    def _prune_aliases(self) -> None:
        pinned = {m.task_id for e in self._entries.values() for m in e.pending if is_temp_id(m.task_id)}
        spare = [temp_id for temp_id in self._aliases if temp_id not in pinned]
        for temp_id in spare[: max(0, len(spare) - self._alias_retention)]:
            del self._aliases[temp_id]

    def _record_failure(self, action: str, task_id: TaskId | None, exc: Exception) -> None:
        self.last_error = MutationFailure(
            action=action,
            task_id=task_id,
            error=exc,
            message=friendly_error_message(action, exc),
        )


def _same_content(optimistic: Task, task: Task) -> bool:
    return (
        not task.completed
        and optimistic.title == task.title
        and optimistic.description == task.description
        and optimistic.priority is task.priority
        and optimistic.due_date == task.due_date
    )

