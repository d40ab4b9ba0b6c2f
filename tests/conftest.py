# tests/conftest.py

from __future__ import annotations

from types import SimpleNamespace

import pytest

from tasksync.core.state import AppState
from tasksync.preferences.store import MemoryPreferenceBackend, PreferenceStore
from tasksync.tasks.sync_coordinator import SyncCoordinator
from tasksync.tasks.task_models import Priority, Task
from tasksync.tasks.task_store import TaskStore

from .fakes import LOCAL_NOW, SERVER_EPOCH, FakeTaskServer, SequentialTempIds


@pytest.fixture()
def server() -> FakeTaskServer:
    """Reference server; new tasks get ids starting at 7."""
    return FakeTaskServer(start_id=7)


@pytest.fixture()
def coordinator() -> SyncCoordinator:
    return SyncCoordinator()


@pytest.fixture()
def store(server: FakeTaskServer, coordinator: SyncCoordinator) -> TaskStore:
    return TaskStore(
        server,
        coordinator,
        clock=lambda: LOCAL_NOW,
        temp_ids=SequentialTempIds(),
    )


@pytest.fixture()
def seeded_task(server: FakeTaskServer) -> Task:
    """Task 7 already on the server (ids for new tasks then start at 8)."""
    return server.seed(
        Task(
            id=7,
            title="Buy milk",
            priority=Priority.HIGH,
            created_at=SERVER_EPOCH,
            updated_at=SERVER_EPOCH,
        )
    )


@pytest.fixture()
def state(server: FakeTaskServer, coordinator: SyncCoordinator, store: TaskStore) -> AppState:
    """
    AppState wired with deterministic fakes.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return AppState(
        settings=SimpleNamespace(api_base_url="http://test"),
        repository=server,
        coordinator=coordinator,
        store=store,
        preferences=PreferenceStore(MemoryPreferenceBackend()),
        clock=lambda: LOCAL_NOW,
    )
