# tests/unit/engine/test_migrations.py
"""Tests for the migration applier and the atomic batch helpers."""

import pytest

from squeel.contracts.errors import MigrationError, TransactionError
from squeel.contracts.protocol import StatementPayload
from squeel.contracts.types import Migration, StorageMode
from squeel.engine.atomic import execute_batch
from squeel.engine.migrations import LEDGER_TABLE, applied_migration_ids, apply_migrations
from tests.helpers import TODOS_MIGRATION, TODOS_SCHEMA, RecordingEngine


def _tables(engine: RecordingEngine) -> set[str]:
    rows = engine.query("SELECT name FROM sqlite_master WHERE type = 'table'", [])
    return {row["name"] for row in rows}


@pytest.fixture
def engine(recording_engine: RecordingEngine) -> RecordingEngine:
    recording_engine.init("test", StorageMode.MEMORY)
    return recording_engine


class TestApplyMigrations:
    def test_applies_in_id_order_regardless_of_list_order(self, engine: RecordingEngine) -> None:
        migrations = [
            Migration(id=3, up="CREATE TABLE c (x INTEGER)"),
            Migration(id=1, up="CREATE TABLE a (x INTEGER)"),
            Migration(id=2, up="CREATE TABLE b (x INTEGER)"),
        ]

        applied = apply_migrations(engine, migrations)

        assert applied == [1, 2, 3]
        creates = [sql for sql in engine.executed if sql.startswith("CREATE TABLE") and LEDGER_TABLE not in sql]
        assert creates == ["CREATE TABLE a (x INTEGER)", "CREATE TABLE b (x INTEGER)", "CREATE TABLE c (x INTEGER)"]

    def test_second_apply_is_a_no_op(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [TODOS_MIGRATION])
        engine.executed.clear()

        assert apply_migrations(engine, [TODOS_MIGRATION]) == []
        assert TODOS_SCHEMA.strip() not in engine.executed
        assert applied_migration_ids(engine) == {1}

    def test_ledger_records_applied_at(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [TODOS_MIGRATION])
        rows = engine.query(f"SELECT id, applied_at FROM {LEDGER_TABLE}", [])
        assert rows[0]["id"] == 1
        assert rows[0]["applied_at"].endswith("+00:00")

    def test_failure_rolls_back_and_stops(self, engine: RecordingEngine) -> None:
        migrations = [
            Migration(id=1, up="CREATE TABLE a (x INTEGER)"),
            Migration(id=2, up="CREATE TABLE b (x INTEGER); INSERT INTO nowhere VALUES (1);"),
            Migration(id=3, up="CREATE TABLE c (x INTEGER)"),
        ]

        with pytest.raises(MigrationError) as exc_info:
            apply_migrations(engine, migrations)

        assert exc_info.value.migration_id == 2
        assert exc_info.value.message == "no such table: nowhere"
        assert "ROLLBACK" in engine.executed
        assert applied_migration_ids(engine) == {1}
        assert "b" not in _tables(engine)
        assert "c" not in _tables(engine)

    def test_duplicate_ids_rejected_before_anything_runs(self, engine: RecordingEngine) -> None:
        migrations = [Migration(id=1, up="CREATE TABLE a (x)"), Migration(id=1, up="CREATE TABLE b (x)")]

        with pytest.raises(MigrationError, match="Duplicate"):
            apply_migrations(engine, migrations)

        assert engine.executed == []

    def test_new_migration_applied_on_top(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [TODOS_MIGRATION])
        later = Migration(id=2, up="ALTER TABLE todos ADD COLUMN due TEXT")

        assert apply_migrations(engine, [TODOS_MIGRATION, later]) == [2]

    def test_down_scripts_never_run(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [Migration(id=1, up="CREATE TABLE a (x)", down="DROP TABLE a")])
        assert "DROP TABLE a" not in engine.executed


class TestExecuteBatch:
    def test_commits_all_statements(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [TODOS_MIGRATION])
        statements = [
            StatementPayload(sql="INSERT INTO todos (title) VALUES (?)", params=["a"]),
            StatementPayload(sql="INSERT INTO todos (title) VALUES (?)", params=["b"]),
        ]

        assert execute_batch(engine, statements) == 2
        assert engine.executed[-4:] == [
            "BEGIN IMMEDIATE",
            "INSERT INTO todos (title) VALUES (?)",
            "INSERT INTO todos (title) VALUES (?)",
            "COMMIT",
        ]

    def test_failure_rolls_back_everything(self, engine: RecordingEngine) -> None:
        apply_migrations(engine, [TODOS_MIGRATION])
        statements = [
            StatementPayload(sql="INSERT INTO todos (title) VALUES ('kept?')"),
            StatementPayload(sql="INSERT INTO todos (title) VALUES (NULL)"),
        ]

        with pytest.raises(TransactionError, match="NOT NULL"):
            execute_batch(engine, statements)

        assert engine.executed[-1] == "ROLLBACK"
        assert engine.query("SELECT COUNT(*) AS n FROM todos", []) == [{"n": 0}]
