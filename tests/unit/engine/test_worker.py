# tests/unit/engine/test_worker.py
"""Tests for the worker thread that owns the engine."""

import queue
from collections.abc import Iterator
from typing import Any

import pytest

from squeel.contracts.errors import ChannelClosedError
from squeel.contracts.protocol import (
    CloseRequest,
    Envelope,
    ErrorResponse,
    ExecRequest,
    ExecResultResponse,
    ExportRequest,
    ExportResultResponse,
    InitRequest,
    QueryRequest,
    QueryResultResponse,
    ReadyResponse,
    Request,
    StatementPayload,
    TransactionRequest,
)
from squeel.contracts.types import Migration, StorageMode
from squeel.engine.worker import DatabaseWorker
from tests.helpers import TODOS_MIGRATION, RecordingEngine


class WorkerHarness:
    """Runs a DatabaseWorker and collects its replies."""

    def __init__(self) -> None:
        self.replies: queue.Queue[dict[str, Any]] = queue.Queue()
        self.exits: queue.Queue[BaseException | None] = queue.Queue()
        self.engine = RecordingEngine()
        self.worker = DatabaseWorker(lambda: self.engine, self.replies.put, on_exit=self.exits.put)
        self.worker.start()
        self._next = 0

    def post(self, request: Request) -> str:
        self._next += 1
        envelope_id = f"req-{self._next}"
        self.worker.post(Envelope(id=envelope_id, request=request).to_wire())
        return envelope_id

    def reply(self) -> Envelope:
        return Envelope.model_validate(self.replies.get(timeout=5))

    def call(self, request: Request) -> Any:
        envelope_id = self.post(request)
        envelope = self.reply()
        assert envelope.id == envelope_id
        return envelope.response


@pytest.fixture
def harness() -> Iterator[WorkerHarness]:
    harness = WorkerHarness()
    yield harness
    harness.worker.stop()
    harness.worker.join(timeout=5)


def _init(migrations: list[Migration] | None = None) -> InitRequest:
    return InitRequest(db_name="test", storage=StorageMode.MEMORY, migrations=migrations or [TODOS_MIGRATION])


class TestDatabaseWorker:
    def test_init_applies_migrations(self, harness: WorkerHarness) -> None:
        response = harness.call(_init())
        assert isinstance(response, ReadyResponse)
        assert response.applied_migrations == [1]

    def test_requests_answered_in_arrival_order(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        ids = [harness.post(ExecRequest(sql="INSERT INTO todos (title) VALUES (?)", params=[str(i)])) for i in range(5)]
        replies = [harness.reply() for _ in ids]

        assert [r.id for r in replies] == ids
        assert [r.response.last_insert_id for r in replies] == [1, 2, 3, 4, 5]

    def test_query_and_exec(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        exec_response = harness.call(ExecRequest(sql="INSERT INTO todos (title) VALUES (?)", params=["a"]))
        query_response = harness.call(QueryRequest(sql="SELECT title FROM todos"))

        assert isinstance(exec_response, ExecResultResponse)
        assert exec_response.changes == 1
        assert isinstance(query_response, QueryResultResponse)
        assert query_response.rows == [{"title": "a"}]

    def test_engine_error_becomes_error_response(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        response = harness.call(QueryRequest(sql="SELECT * FROM missing"))

        assert isinstance(response, ErrorResponse)
        assert response.error.kind == "engine"
        assert response.error.message == "no such table: missing"

    def test_query_before_init_is_an_error(self, harness: WorkerHarness) -> None:
        response = harness.call(QueryRequest(sql="SELECT 1"))
        assert isinstance(response, ErrorResponse)
        assert "not initialized" in response.error.message

    def test_transaction_failure_reports_transaction_kind(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        response = harness.call(
            TransactionRequest(
                statements=[
                    StatementPayload(sql="INSERT INTO todos (title) VALUES ('a')"),
                    StatementPayload(sql="INSERT INTO todos (title) VALUES (NULL)"),
                ]
            )
        )

        assert isinstance(response, ErrorResponse)
        assert response.error.kind == "transaction"
        assert "ROLLBACK" in harness.engine.executed

    def test_migration_failure_reports_id_and_closes_engine(self, harness: WorkerHarness) -> None:
        broken = Migration(id=2, up="INSERT INTO nowhere VALUES (1)")
        response = harness.call(_init([TODOS_MIGRATION, broken]))

        assert isinstance(response, ErrorResponse)
        assert response.error.kind == "migration"
        assert response.error.migration_id == 2
        assert not harness.engine.is_open

    def test_export_returns_bytes(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        response = harness.call(ExportRequest())
        assert isinstance(response, ExportResultResponse)
        assert response.data.startswith(b"SQLite format 3")

    def test_malformed_envelopes_are_skipped(self, harness: WorkerHarness) -> None:
        harness.worker.post({"id": "bad", "request": {"type": "launch_missiles"}})
        harness.worker.post({"id": "resp", "response": {"type": "ready"}})
        response = harness.call(_init())

        assert isinstance(response, ReadyResponse)
        assert harness.replies.empty()

    def test_close_stops_the_worker(self, harness: WorkerHarness) -> None:
        harness.call(_init())
        response = harness.call(CloseRequest())
        harness.worker.join(timeout=5)

        assert isinstance(response, ReadyResponse)
        assert not harness.worker.alive
        assert harness.exits.get(timeout=5) is None
        assert not harness.engine.is_open
        with pytest.raises(ChannelClosedError):
            harness.post(QueryRequest(sql="SELECT 1"))
