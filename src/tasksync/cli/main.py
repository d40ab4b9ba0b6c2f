# src/tasksync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then either runs the console REPL or,
with the console disabled, prints the current visible task list once.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..cli.commands import format_task
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import TaskSyncError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def run_app(settings) -> None:
    state = create_initial_state(settings=settings)
    try:
        if settings.console_enabled:
            await run_console_loop(state)
            return

        logger.info("Console disabled. Listing tasks once.")
        try:
            await state.store.refresh()
        except TaskSyncError:
            err = state.store.last_error
            print(err.message if err else "Failed to fetch tasks.")
            return
        for task in state.visible_tasks():
            print(format_task(state, task))
    finally:
        await shutdown_state(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)
    try:
        asyncio.run(run_app(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    logger.info("Bye.")


if __name__ == "__main__":
    main()
