# src/tasksync/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Mapping

APP_LOGGER = "tasksync"

# Our own loggers that are too chatty for an interactive prompt.
# Each maps to the minimum level still shown on the console.
CONSOLE_QUIET: dict[str, int] = {
    "tasksync.tasks.task_repository": logging.WARNING,  # one line per HTTP request
    "tasksync.tasks.sync_coordinator": logging.INFO,  # queue/rekey debug traces
}

# Third-party loggers capped in every handler, file included.
LIBRARY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console-only filter:
    - tasksync.* passes, except the loggers in `quiet` below their threshold
    - everything else (py.warnings, libraries) only from ERROR up
    """

    def __init__(self, quiet: Mapping[str, int] | None = None) -> None:
        super().__init__()
        self._quiet = dict(CONSOLE_QUIET if quiet is None else quiet)

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == APP_LOGGER or name.startswith(APP_LOGGER + "."):
            for prefix, level in self._quiet.items():
                if name == prefix or name.startswith(prefix + "."):
                    return record.levelno >= level
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/tasksync",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) + file handler (full debug trail of every
    optimistic change, commit and rollback).

    Call once, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "tasksync.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    trail = logging.FileHandler(str(log_file), encoding="utf-8")
    trail.setLevel(file_level)
    trail.setFormatter(fmt)
    root.addHandler(trail)

    logging.captureWarnings(True)
    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    return log_file
