from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from conductor.core.errors import MigrationRequired, StateValidationError, ValidationFailedError
from conductor.runtime.state import (
    StateRecord,
    StateStore,
    StateValidationResult,
    new_state_id,
)
from conductor.storage.files import FileOperations


@pytest.fixture
def store(files: FileOperations) -> StateStore:
    return StateStore(files, "echo", "2.0.0")


def _write_raw(files: FileOperations, state_id: str, payload: dict) -> None:
    files.write(f"state/echo/{state_id}.json", json.dumps(payload))


def test_state_store_should_round_trip_records(store: StateStore) -> None:
    saved = store.save(
        {
            "schema_version": "2.0.0",
            "data": {"answers": ["first"], "count": 1},
            "artifacts": ["project.md"],
        }
    )
    loaded = store.load()

    assert loaded is not None
    assert loaded.id == saved.id
    assert loaded.mode_id == "echo"
    assert isinstance(loaded.timestamp, datetime)
    assert loaded.timestamp == saved.timestamp
    assert loaded.data == {"answers": ["first"], "count": 1}
    assert loaded.artifacts == ["project.md"]
    assert loaded.checksum == saved.checksum


def test_save_should_fill_id_and_timestamp_but_not_schema_version(store: StateStore, files: FileOperations) -> None:
    saved = store.save(StateRecord(data={"x": 1}))

    assert saved.id.startswith("echo-")
    assert saved.timestamp is not None and saved.timestamp.tzinfo is not None
    stored = json.loads(files.read(f"state/echo/{saved.id}.json").content)
    assert stored["schema_version"] is None
    assert stored["mode_id"] == "echo"
    assert stored["checksum"] == saved.checksum


def test_save_should_not_mutate_the_callers_record(store: StateStore) -> None:
    record = StateRecord(data={"x": 1})
    store.save(record)
    assert record.id == ""
    assert record.checksum is None


def test_save_should_reject_foreign_mode_records(store: StateStore) -> None:
    with pytest.raises(ValidationFailedError):
        store.save({"mode_id": "other", "data": {}})


def test_load_should_return_none_without_state(store: StateStore) -> None:
    assert store.load() is None
    assert store.load("echo-missing") is None
    assert store.list_ids() == []


def test_load_should_pick_lexically_greatest_id(store: StateStore) -> None:
    for state_id in ("echo-001", "echo-003", "echo-002"):
        store.save({"id": state_id, "schema_version": "2.0.0", "data": {"id": state_id}})

    assert store.list_ids() == ["echo-001", "echo-002", "echo-003"]
    latest = store.load()
    assert latest is not None and latest.id == "echo-003"
    assert store.load("echo-001").data == {"id": "echo-001"}


def test_new_state_id_should_sort_in_creation_order() -> None:
    earlier = datetime(2024, 1, 1, 23, 59, 59, 999999, tzinfo=timezone.utc)
    later = earlier + timedelta(microseconds=1)
    assert new_state_id("echo", earlier) < new_state_id("echo", later)


def test_legacy_record_should_be_migrated_in_memory_only(files: FileOperations) -> None:
    seen_versions: list[str | None] = []

    def migrator(record: StateRecord) -> StateRecord:
        seen_versions.append(record.schema_version)
        record.data["migrated"] = True
        return record

    store = StateStore(files, "echo", "2.0.0", migrator=migrator)
    _write_raw(
        files,
        "echo-legacy",
        {
            "id": "echo-legacy",
            "mode_id": "echo",
            "timestamp": "2024-01-01T00:00:00Z",
            "data": {"answers": []},
            "artifacts": [],
        },
    )

    loaded = store.load()

    assert loaded is not None
    assert seen_versions == ["1.0.0"]
    assert loaded.schema_version == "2.0.0"
    assert loaded.data == {"answers": [], "migrated": True}
    assert loaded.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    on_disk = json.loads(files.read("state/echo/echo-legacy.json").content)
    assert "schema_version" not in on_disk


def test_load_without_migration_should_signal_migration_required(files: FileOperations, store: StateStore) -> None:
    store.save({"id": "echo-old", "schema_version": "1.5.0", "data": {}})

    with pytest.raises(MigrationRequired) as exc_info:
        store.load(migrate=False)

    assert exc_info.value.record.id == "echo-old"
    assert exc_info.value.validation.needs_migration is True
    assert exc_info.value.validation.current_version == "1.5.0"
    assert exc_info.value.validation.target_version == "2.0.0"


def test_structurally_invalid_record_should_raise(files: FileOperations, store: StateStore) -> None:
    _write_raw(
        files,
        "echo-bad",
        {"id": "echo-bad", "mode_id": "echo", "timestamp": "not a date", "data": [], "artifacts": []},
    )

    with pytest.raises(StateValidationError) as exc_info:
        store.load("echo-bad")

    assert "data must be a mapping" in exc_info.value.errors
    assert "timestamp must be an ISO-8601 datetime" in exc_info.value.errors


def test_unparseable_record_should_raise(files: FileOperations, store: StateStore) -> None:
    files.write("state/echo/echo-broken.json", "{not json")
    with pytest.raises(StateValidationError):
        store.load()


def test_tampered_record_should_fail_checksum(files: FileOperations, store: StateStore) -> None:
    saved = store.save({"schema_version": "2.0.0", "data": {"score": 1}})
    path = f"state/echo/{saved.id}.json"
    payload = json.loads(files.read(path).content)
    payload["data"]["score"] = 99
    files.write(path, json.dumps(payload))

    with pytest.raises(StateValidationError) as exc_info:
        store.load()
    assert exc_info.value.errors == ["checksum mismatch"]


def test_mode_validator_errors_should_be_hard_failures(files: FileOperations) -> None:
    def validator(record: StateRecord) -> StateValidationResult:
        if "answers" not in record.data:
            return StateValidationResult(is_valid=False, errors=["answers missing"])
        return StateValidationResult()

    store = StateStore(files, "echo", "2.0.0", validator=validator)
    store.save({"schema_version": "2.0.0", "data": {}})

    with pytest.raises(StateValidationError) as exc_info:
        store.load()
    assert exc_info.value.errors == ["answers missing"]


def test_validate_should_warn_on_missing_checksum(store: StateStore) -> None:
    record = StateRecord(
        id="echo-1",
        mode_id="echo",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        schema_version="2.0.0",
    )
    result = store.validate(record)
    assert result.is_valid is True
    assert result.needs_migration is False
    assert result.warnings == ["State echo-1 has no checksum"]


def test_clear_should_delete_one_or_all_records(store: StateStore) -> None:
    for state_id in ("echo-1", "echo-2", "echo-3"):
        store.save({"id": state_id, "data": {}})

    assert store.clear("echo-2") == 1
    assert store.clear("echo-2") == 0
    assert store.list_ids() == ["echo-1", "echo-3"]
    assert store.clear() == 2
    assert store.load() is None
    assert store.clear() == 0


def test_state_ids_with_path_separators_should_be_rejected(store: StateStore) -> None:
    with pytest.raises(ValidationFailedError):
        store.load("../config/config")
    with pytest.raises(StateValidationError):
        store.save({"id": "a/b", "data": {}})


def test_save_should_reject_data_that_is_not_json(store: StateStore) -> None:
    with pytest.raises(StateValidationError) as exc_info:
        store.save({"id": "echo-when", "data": {"when": datetime(2024, 1, 1, tzinfo=timezone.utc)}})

    assert exc_info.value.state_id == "echo-when"
    assert exc_info.value.errors[0].startswith("record is not JSON serializable")
    assert store.list_ids() == []
