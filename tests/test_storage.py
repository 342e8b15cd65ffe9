"""Tests for the SQL persistence adapter."""

from datetime import datetime

import pytest

from unbind.errors import ErrorKind, StorageFailure
from unbind.storage import SqlStorage, parse_timestamp


def test_initialize_creates_tables(storage):
    rows = storage.query(
        "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
    )
    names = {row["name"] for row in rows}
    assert {"favorites", "kill_history"} <= names


def test_initialize_is_idempotent(storage):
    storage.initialize()
    storage.initialize()


def test_execute_and_query_roundtrip(storage):
    storage.execute(
        "INSERT INTO favorites (port, label) VALUES (:port, :label)",
        {"port": 3000, "label": "API"},
    )

    rows = storage.query("SELECT port, label, created_at FROM favorites")

    assert len(rows) == 1
    assert rows[0]["port"] == 3000
    assert rows[0]["label"] == "API"
    assert isinstance(parse_timestamp(rows[0]["created_at"]), datetime)


def test_favorites_port_is_unique(storage):
    storage.execute("INSERT INTO favorites (port, label) VALUES (1, 'a')")

    with pytest.raises(StorageFailure) as excinfo:
        storage.execute("INSERT INTO favorites (port, label) VALUES (1, 'b')")

    assert excinfo.value.kind is ErrorKind.STORAGE_FAILURE


def test_batch_rolls_back_on_failure(storage):
    with pytest.raises(StorageFailure):
        storage.execute_batch(
            [
                ("INSERT INTO kill_history (port, pid, process_name) VALUES (1, 2, 'x')", None),
                ("INSERT INTO no_such_table VALUES (1)", None),
            ]
        )

    assert storage.query("SELECT * FROM kill_history") == []


def test_query_error_is_storage_failure(storage):
    with pytest.raises(StorageFailure):
        storage.query("SELECT * FROM missing")


def test_in_memory_database_is_shared_across_threads():
    import threading

    store = SqlStorage("sqlite://")
    store.initialize()
    try:
        thread = threading.Thread(
            target=store.execute,
            args=("INSERT INTO favorites (port, label) VALUES (8080, 'web')",),
        )
        thread.start()
        thread.join()

        assert store.query("SELECT port FROM favorites") == [{"port": 8080}]
    finally:
        store.close()


def test_file_database_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "unbind.db"
    store = SqlStorage(f"sqlite:///{path}")
    store.initialize()
    store.close()

    assert path.exists()


def test_parse_timestamp_accepts_datetime_and_text():
    now = datetime(2024, 1, 2, 3, 4, 5)
    assert parse_timestamp(now) is now
    assert parse_timestamp("2024-01-02 03:04:05.123") == datetime(2024, 1, 2, 3, 4, 5, 123000)
