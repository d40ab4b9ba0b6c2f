# src/tasksync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (HTTP repository, coordinator,
  store, preferences).
"""

from __future__ import annotations

import asyncio
import logging

from ..config import get_settings
from ..core.state import AppState
from ..preferences.store import JsonFilePreferenceBackend, PreferenceStore
from ..tasks.sync_coordinator import SyncCoordinator
from ..tasks.task_repository import HttpTaskRepository
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.preferences_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    repository = HttpTaskRepository(
        settings.api_base_url,
        timeout=settings.api_timeout_seconds,
        token=settings.api_token,
    )
    coordinator = SyncCoordinator(
        max_retries=settings.sync_max_retries,
        retry_backoff_seconds=settings.sync_retry_backoff_seconds,
    )
    preferences = PreferenceStore(JsonFilePreferenceBackend(settings.preferences_path))
    preferences.load()

    logger.info("Task API: %s (timeout=%.1fs)", settings.api_base_url, settings.api_timeout_seconds)
    return AppState(
        settings=settings,
        repository=repository,
        coordinator=coordinator,
        store=TaskStore(repository, coordinator),
        preferences=preferences,
    )


async def shutdown_state(state: AppState, *, grace_seconds: float = 5.0) -> None:
    """Let in-flight mutations settle, then release the HTTP client."""
    try:
        await asyncio.wait_for(state.drain(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning("Pending mutations did not settle within %.1fs; cancelling.", grace_seconds)
        for task in list(state.background):
            task.cancel()
        await state.coordinator.aclose()

    aclose = getattr(state.repository, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("Repository close failed.", exc_info=True)
