# src/tasksync/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.errors import TaskSyncError, ValidationError
from ..core.state import AppState
from ..tasks.task_store import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _report_change(event: ChangeEvent) -> None:
    """Store subscription: surface background outcomes the user did not wait for."""
    if event.kind in (ChangeKind.ROLLED_BACK, ChangeKind.LOAD_FAILED) and event.failure is not None:
        _print_ts(f"[!] {event.failure.message}")
    elif event.kind is ChangeKind.COMMITTED and event.task_id is not None:
        logger.debug("Task %s saved.", event.task_id)


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Manage your tasks. Use /help for commands. Use /exit to quit.\n")

    unsubscribe = state.store.subscribe(_report_change)
    try:
        reply = await command_registry.handle(state, "/refresh", emit=_print_ts)
        if reply:
            _print_ts(reply)

        while True:
            try:
                user_input = (await _read_line("tasks> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not user_input.startswith("/"):
                # Bare text is shorthand for /add.
                user_input = f"/add {user_input}"

            try:
                cmd_response = await command_registry.handle(state, user_input, emit=_print_ts)
            except ValidationError as exc:
                cmd_response = f"Invalid input: {exc.message}"
            except TaskSyncError as exc:
                cmd_response = f"Error: {exc}"
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is not None:
                _print_ts(cmd_response)
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
