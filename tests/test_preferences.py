# tests/test_preferences.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tasksync.core.errors import ValidationError
from tasksync.preferences.store import (
    PREFERENCES_KEY,
    JsonFilePreferenceBackend,
    MemoryPreferenceBackend,
    PreferenceStore,
)
from tasksync.tasks.task_models import (
    PriorityFilter,
    QuerySpec,
    SortDirection,
    SortKey,
    StatusFilter,
)


def test_defaults_when_nothing_saved() -> None:
    prefs = PreferenceStore(MemoryPreferenceBackend())

    spec = prefs.load()

    assert spec == QuerySpec()
    assert spec.status_filter is StatusFilter.ALL
    assert spec.sort_key is SortKey.CREATED_AT
    assert spec.sort_direction is SortDirection.DESC
    assert spec.search_text == ""


def test_json_file_survives_restart(tmp_path: Path) -> None:
    path = tmp_path / "prefs" / "preferences.json"
    chosen = QuerySpec(
        status_filter=StatusFilter.OVERDUE,
        priority_filter=PriorityFilter.HIGH,
        sort_key=SortKey.DUE_DATE,
        sort_direction=SortDirection.ASC,
        search_text="milk",
    )

    PreferenceStore(JsonFilePreferenceBackend(path)).set(chosen)
    reloaded = PreferenceStore(JsonFilePreferenceBackend(path)).load()

    assert reloaded == chosen
    assert json.loads(path.read_text("utf-8"))[PREFERENCES_KEY]["sortKey"] == "dueDate"
    assert not path.with_suffix(".tmp").exists()


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text("{not json", "utf-8")

    assert PreferenceStore(JsonFilePreferenceBackend(path)).load() == QuerySpec()


def test_unknown_values_fall_back_per_field() -> None:
    backend = MemoryPreferenceBackend(
        {PREFERENCES_KEY: {"statusFilter": "someday", "sortKey": "title", "searchText": 42}}
    )

    spec = PreferenceStore(backend).load()

    assert spec.status_filter is StatusFilter.ALL
    assert spec.sort_key is SortKey.TITLE
    assert spec.search_text == ""


def test_set_writes_only_on_change() -> None:
    backend = MemoryPreferenceBackend()
    prefs = PreferenceStore(backend)
    prefs.load()

    prefs.set(QuerySpec())
    assert backend.writes == 0

    prefs.update(search_text="milk")
    prefs.update(search_text="milk")
    assert backend.writes == 1
    assert backend.data == {PREFERENCES_KEY: QuerySpec(search_text="milk").to_dict()}


def test_update_rejects_unknown_fields() -> None:
    prefs = PreferenceStore(MemoryPreferenceBackend())

    with pytest.raises(TypeError):
        prefs.update(colour="blue")


def test_update_accepts_plain_strings_for_choices() -> None:
    backend = MemoryPreferenceBackend()
    prefs = PreferenceStore(backend)

    spec = prefs.update(status_filter="overdue", sort_key="duedate", sort_direction="DESC")

    assert spec.status_filter is StatusFilter.OVERDUE
    assert spec.sort_key is SortKey.DUE_DATE
    assert spec.sort_direction is SortDirection.DESC
    assert backend.data[PREFERENCES_KEY]["sortKey"] == "dueDate"


def test_unknown_choice_is_rejected_and_nothing_is_written() -> None:
    backend = MemoryPreferenceBackend()
    prefs = PreferenceStore(backend)

    with pytest.raises(ValidationError) as excinfo:
        prefs.update(status_filter="someday")

    assert excinfo.value.field == "status_filter"
    assert prefs.get() == QuerySpec()
    assert backend.writes == 0
    with pytest.raises(ValidationError):
        QuerySpec(sort_direction="up")


def test_write_failure_keeps_selection_in_memory() -> None:
    class ReadOnlyBackend(MemoryPreferenceBackend):
        def write(self, data):
            raise OSError("read-only file system")

    prefs = PreferenceStore(ReadOnlyBackend())

    spec = prefs.update(status_filter=StatusFilter.ACTIVE)

    assert prefs.get() == spec
    assert spec.status_filter is StatusFilter.ACTIVE


def test_listeners_see_changes_until_unsubscribed() -> None:
    prefs = PreferenceStore(MemoryPreferenceBackend())
    seen: list[QuerySpec] = []
    unsubscribe = prefs.subscribe(seen.append)

    prefs.update(sort_key=SortKey.TITLE)
    unsubscribe()
    prefs.update(sort_key=SortKey.PRIORITY)

    assert [s.sort_key for s in seen] == [SortKey.TITLE]
