# src/tasksync/tasks/sync_coordinator.py

from __future__ import annotations

"""
Per-task mutation sequencing.

Every task id gets a lane: a FIFO of jobs with at most one job in flight.
Lanes for different ids drain concurrently, one asyncio task per active lane.

A job is split in two:
- send: the network call (may suspend, may be retried),
- on_success / on_failure: synchronous reconciliation.

The lane is released only after reconciliation ran, so the next queued send
always observes the reconciled state (e.g. the server id of a fresh create).
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..core.errors import MutationCancelled, TaskSyncError
from .task_models import MutationKind, TaskId

logger = logging.getLogger(__name__)

_DROPPED_BY_DELETE = (MutationKind.UPDATE, MutationKind.TOGGLE)


@dataclass(slots=True)
class _Job:
    kind: MutationKind
    send: Callable[[], Awaitable[Any]]
    on_success: Callable[[Any], Any]
    on_failure: Callable[[Exception], None]
    on_drop: Callable[[], None] | None
    future: asyncio.Future


@dataclass(slots=True)
class _Lane:
    key: TaskId
    queue: deque[_Job] = field(default_factory=deque)
    current: _Job | None = None
    runner: asyncio.Task | None = None


class SyncCoordinator:
    def __init__(
        self,
        *,
        max_retries: int = 0,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._max_retries = max(0, int(max_retries))
        self._backoff = max(0.0, float(retry_backoff_seconds))
        self._sleep = sleep
        self._lanes: dict[TaskId, _Lane] = {}

    # ---- introspection ----

    def is_busy(self, key: TaskId) -> bool:
        return key in self._lanes

    def in_flight(self, key: TaskId) -> MutationKind | None:
        lane = self._lanes.get(key)
        if lane is None or lane.current is None:
            return None
        return lane.current.kind

    def queued(self, key: TaskId) -> list[MutationKind]:
        lane = self._lanes.get(key)
        return [job.kind for job in lane.queue] if lane else []

    # ---- scheduling ----

    def submit(
        self,
        key: TaskId,
        kind: MutationKind,
        send: Callable[[], Awaitable[Any]],
        *,
        on_success: Callable[[Any], Any],
        on_failure: Callable[[Exception], None],
        on_drop: Callable[[], None] | None = None,
    ) -> asyncio.Future:
        """
        Enqueue a mutation for `key` and return a future with its outcome.

        A delete drops queued (not yet sent) updates/toggles for the same key.
        """
        loop = asyncio.get_running_loop()
        job = _Job(
            kind=kind,
            send=send,
            on_success=on_success,
            on_failure=on_failure,
            on_drop=on_drop,
            future=loop.create_future(),
        )

        lane = self._lanes.get(key)
        if lane is None:
            lane = _Lane(key=key)
            self._lanes[key] = lane

        if kind is MutationKind.DELETE:
            self._drop_queued(lane)

        if lane.current is None and not lane.queue:
            # Idle lane: the job is in flight from now on, so a delete issued
            # in the same tick queues behind it instead of dropping it.
            lane.current = job
        else:
            lane.queue.append(job)
        logger.debug(
            "Queued %s for task=%s (in_flight=%s queued=%d)",
            kind.value,
            key,
            lane.current.kind.value if lane.current else None,
            len(lane.queue),
        )

        if lane.runner is None:
            lane.runner = loop.create_task(self._drain(lane))
        return job.future

    def rekey(self, old: TaskId, new: TaskId) -> None:
        """
        Move the lane of `old` to `new` (temporary id replaced by the server id).

        If `new` already has a lane (a refresh brought the record in before the
        create was acknowledged), the remaining jobs of `old` are chained behind
        it so `new` never has two jobs in flight.
        """
        lane = self._lanes.pop(old, None)
        if lane is None:
            return
        existing = self._lanes.get(new)
        if existing is None:
            lane.key = new
            self._lanes[new] = lane
            logger.debug("Lane rekeyed %s -> %s", old, new)
            return

        existing.queue.extend(lane.queue)
        lane.queue.clear()
        if existing.runner is None and (existing.current is not None or existing.queue):
            existing.runner = asyncio.get_running_loop().create_task(self._drain(existing))
        logger.debug("Lane %s chained behind busy lane %s (%d queued)", old, new, len(existing.queue))

    async def wait_idle(self) -> None:
        """Wait until every lane has drained (including lanes started meanwhile)."""
        while self._lanes:
            runners = [lane.runner for lane in self._lanes.values() if lane.runner is not None]
            if not runners:
                return
            await asyncio.gather(*runners, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel everything still queued or in flight."""
        lanes = list(self._lanes.values())
        for lane in lanes:
            while lane.queue:
                job = lane.queue.popleft()
                if not job.future.done():
                    job.future.cancel()
            if lane.runner is not None:
                lane.runner.cancel()
        for lane in lanes:
            if lane.runner is not None:
                await asyncio.gather(lane.runner, return_exceptions=True)
            # A runner cancelled before its first step never saw its current job.
            if lane.current is not None and not lane.current.future.done():
                lane.current.future.cancel()
        self._lanes.clear()

    # ---- internals ----

    def _drop_queued(self, lane: _Lane) -> None:
        kept: deque[_Job] = deque()
        for job in lane.queue:
            if job.kind not in _DROPPED_BY_DELETE:
                kept.append(job)
                continue
            logger.info("Dropping queued %s for task=%s (superseded by delete)", job.kind.value, lane.key)
            if job.on_drop is not None:
                try:
                    job.on_drop()
                except Exception:
                    logger.exception("on_drop hook failed task=%s", lane.key)
            if not job.future.done():
                job.future.set_exception(
                    MutationCancelled(f"{job.kind.value} for task {lane.key} superseded by delete")
                )
        lane.queue = kept

    async def _drain(self, lane: _Lane) -> None:
        try:
            while True:
                if lane.current is None:
                    if not lane.queue:
                        break
                    lane.current = lane.queue.popleft()
                await self._run(lane, lane.current)
                lane.current = None
        except asyncio.CancelledError:
            job = lane.current
            if job is not None and not job.future.done():
                job.future.cancel()
            raise
        finally:
            lane.current = None
            lane.runner = None
            if self._lanes.get(lane.key) is lane and not lane.queue:
                del self._lanes[lane.key]

    async def _run(self, lane: _Lane, job: _Job) -> None:
        try:
            result = await self._send_with_retry(lane.key, job)
        except Exception as exc:
            try:
                job.on_failure(exc)
            except Exception:
                logger.exception("on_failure hook failed task=%s kind=%s", lane.key, job.kind.value)
            if not job.future.done():
                job.future.set_exception(exc)
            return

        try:
            value = job.on_success(result)
        except Exception as exc:
            logger.exception("on_success hook failed task=%s kind=%s", lane.key, job.kind.value)
            if not job.future.done():
                job.future.set_exception(exc)
            return

        if not job.future.done():
            job.future.set_result(value)

    async def _send_with_retry(self, key: TaskId, job: _Job) -> Any:
        attempt = 0
        while True:
            try:
                return await job.send()
            except TaskSyncError as exc:
                if not exc.retryable or attempt >= self._max_retries:
                    raise
                delay = self._backoff * (2**attempt)
                attempt += 1
                logger.warning(
                    "%s for task=%s failed (%s); retry %d/%d in %.2fs",
                    job.kind.value,
                    key,
                    exc,
                    attempt,
                    self._max_retries,
                    delay,
                )
                await self._sleep(delay)
