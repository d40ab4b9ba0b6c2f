# tests/test_sync_coordinator.py

from __future__ import annotations

import asyncio

import pytest

from tasksync.core.errors import (
    MutationCancelled,
    NetworkError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from tasksync.tasks.sync_coordinator import SyncCoordinator
from tasksync.tasks.task_models import MutationKind

from .fakes import settle


class Journal:
    """Records send/settle events so tests can assert on interleaving."""

    def __init__(self) -> None:
        self.events: list[str] = []

    def job(self, name: str, *, gate: asyncio.Event | None = None, error: Exception | None = None):
        async def send():
            self.events.append(f"send:{name}")
            if gate is not None:
                await gate.wait()
            if error is not None:
                raise error
            return name

        def on_success(result):
            self.events.append(f"ok:{name}")
            return result

        def on_failure(exc):
            self.events.append(f"fail:{name}")

        return send, on_success, on_failure


def _submit(coord: SyncCoordinator, key, kind, journal: Journal, name: str, **kwargs):
    send, on_success, on_failure = journal.job(name, **kwargs)
    return coord.submit(key, kind, send, on_success=on_success, on_failure=on_failure)


@pytest.mark.asyncio
async def test_same_task_runs_strictly_in_order() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()

    first = _submit(coord, 7, MutationKind.UPDATE, journal, "first", gate=gate)
    second = _submit(coord, 7, MutationKind.DELETE, journal, "second")
    await settle()

    assert journal.events == ["send:first"]
    assert coord.in_flight(7) is MutationKind.UPDATE
    assert coord.queued(7) == [MutationKind.DELETE]

    gate.set()
    assert await first == "first"
    assert await second == "second"
    assert journal.events == ["send:first", "ok:first", "send:second", "ok:second"]
    await coord.wait_idle()
    assert not coord.is_busy(7)


@pytest.mark.asyncio
async def test_different_tasks_run_in_parallel() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()

    slow = _submit(coord, 1, MutationKind.UPDATE, journal, "slow", gate=gate)
    fast = _submit(coord, 2, MutationKind.UPDATE, journal, "fast")

    assert await fast == "fast"
    assert not slow.done()
    assert "ok:slow" not in journal.events

    gate.set()
    assert await slow == "slow"


@pytest.mark.asyncio
async def test_error_propagates_unchanged_after_failure_hook() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    error = ValidationError("title is required", field="title", status_code=400)

    fut = _submit(coord, 7, MutationKind.UPDATE, journal, "bad", error=error)
    with pytest.raises(ValidationError) as exc_info:
        await fut

    assert exc_info.value is error
    assert journal.events == ["send:bad", "fail:bad"]


@pytest.mark.asyncio
async def test_next_job_runs_after_a_failure() -> None:
    coord = SyncCoordinator()
    journal = Journal()

    failing = _submit(coord, 7, MutationKind.UPDATE, journal, "a", error=ServerError("boom", status_code=500))
    following = _submit(coord, 7, MutationKind.UPDATE, journal, "b")

    with pytest.raises(ServerError):
        await failing
    assert await following == "b"
    assert journal.events == ["send:a", "fail:a", "send:b", "ok:b"]


@pytest.mark.asyncio
async def test_no_automatic_retry_by_default() -> None:
    coord = SyncCoordinator()
    journal = Journal()

    fut = _submit(coord, 7, MutationKind.UPDATE, journal, "x", error=NetworkError("connection refused"))
    with pytest.raises(NetworkError):
        await fut
    assert journal.events.count("send:x") == 1


@pytest.mark.asyncio
async def test_retries_server_errors_with_backoff_when_enabled() -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    coord = SyncCoordinator(max_retries=2, retry_backoff_seconds=0.5, sleep=fake_sleep)
    attempts = {"n": 0}

    async def send():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise ServerError("busy", status_code=503)
        return "done"

    fut = coord.submit(7, MutationKind.UPDATE, send, on_success=lambda r: r, on_failure=lambda e: None)
    assert await fut == "done"
    assert attempts["n"] == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [ValidationError("bad", field="title"), NotFoundError("gone", task_id=7)],
)
async def test_client_errors_are_never_retried(error: Exception) -> None:
    async def fake_sleep(delay: float) -> None:
        raise AssertionError("must not back off")

    coord = SyncCoordinator(max_retries=5, sleep=fake_sleep)
    journal = Journal()

    fut = _submit(coord, 7, MutationKind.UPDATE, journal, "x", error=error)
    with pytest.raises(type(error)):
        await fut
    assert journal.events == ["send:x", "fail:x"]


@pytest.mark.asyncio
async def test_delete_drops_queued_updates_but_not_in_flight_one() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()
    dropped: list[str] = []

    in_flight = _submit(coord, 7, MutationKind.UPDATE, journal, "in-flight", gate=gate)
    await settle()

    send, on_success, on_failure = journal.job("queued")
    queued = coord.submit(
        7,
        MutationKind.TOGGLE,
        send,
        on_success=on_success,
        on_failure=on_failure,
        on_drop=lambda: dropped.append("queued"),
    )
    delete = _submit(coord, 7, MutationKind.DELETE, journal, "delete")

    assert dropped == ["queued"]
    with pytest.raises(MutationCancelled):
        await queued

    gate.set()
    await in_flight
    await delete
    assert journal.events == ["send:in-flight", "ok:in-flight", "send:delete", "ok:delete"]


@pytest.mark.asyncio
async def test_rekey_moves_queue_to_new_id() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()

    create = _submit(coord, "temp_1", MutationKind.CREATE, journal, "create", gate=gate)
    update = _submit(coord, "temp_1", MutationKind.UPDATE, journal, "update")
    await settle()

    coord.rekey("temp_1", 7)
    assert coord.is_busy(7)
    assert not coord.is_busy("temp_1")
    assert coord.queued(7) == [MutationKind.UPDATE]

    gate.set()
    await create
    await update
    await coord.wait_idle()
    assert not coord.is_busy(7)


@pytest.mark.asyncio
async def test_job_on_idle_task_is_in_flight_before_the_loop_runs() -> None:
    coord = SyncCoordinator()
    journal = Journal()

    update = _submit(coord, 7, MutationKind.UPDATE, journal, "update")
    assert coord.in_flight(7) is MutationKind.UPDATE
    delete = _submit(coord, 7, MutationKind.DELETE, journal, "delete")
    assert coord.queued(7) == [MutationKind.DELETE]

    assert await asyncio.gather(update, delete) == ["update", "delete"]
    assert journal.events == ["send:update", "ok:update", "send:delete", "ok:delete"]


@pytest.mark.asyncio
async def test_rekey_onto_busy_id_chains_behind_it() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()

    first = _submit(coord, 8, MutationKind.UPDATE, journal, "u1", gate=gate)

    async def send_create():
        journal.events.append("send:create")
        return 8

    create = coord.submit(
        "temp_1",
        MutationKind.CREATE,
        send_create,
        on_success=lambda task_id: coord.rekey("temp_1", task_id),
        on_failure=lambda exc: None,
    )
    second = _submit(coord, "temp_1", MutationKind.UPDATE, journal, "u2")
    await create
    await settle()

    assert "send:u2" not in journal.events
    assert coord.in_flight(8) is MutationKind.UPDATE
    assert coord.queued(8) == [MutationKind.UPDATE]

    gate.set()
    await first
    await second
    assert journal.events.index("send:u2") > journal.events.index("ok:u1")
    await coord.wait_idle()
    assert not coord.is_busy(8)


@pytest.mark.asyncio
async def test_aclose_cancels_pending_work() -> None:
    coord = SyncCoordinator()
    journal = Journal()
    gate = asyncio.Event()

    running = _submit(coord, 7, MutationKind.UPDATE, journal, "running", gate=gate)
    waiting = _submit(coord, 7, MutationKind.UPDATE, journal, "waiting")
    await settle()

    await coord.aclose()
    assert running.cancelled()
    assert waiting.cancelled()
    assert "send:waiting" not in journal.events
