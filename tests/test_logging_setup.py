# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from tasksync.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("tasksync.tasks.task_store", logging.DEBUG, True),
        ("tasksync.tasks.task_repository", logging.INFO, False),
        ("tasksync.tasks.task_repository", logging.WARNING, True),
        ("tasksync.tasks.sync_coordinator", logging.DEBUG, False),
        ("httpx", logging.WARNING, False),
        ("py.warnings", logging.ERROR, True),
        ("tasksyncer", logging.INFO, False),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown


def test_setup_logging_writes_debug_to_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        log_file = setup_logging(log_dir=tmp_path / "logs")
        logging.getLogger("tasksync.tasks.task_store").debug("optimistic create temp_1")
        for h in root.handlers:
            h.flush()

        assert log_file == tmp_path / "logs" / "tasksync.log"
        assert "optimistic create temp_1" in log_file.read_text("utf-8")
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
