# src/squeel/engine/worker.py
"""DatabaseWorker: the isolated execution context that owns the engine.

The worker is a dedicated thread. Envelopes are posted into a FIFO inbox
and processed strictly one at a time in arrival order; each request's
response envelope is handed to ``reply`` (normally
CorrelationChannel.deliver, which hops back onto the caller's loop).

Thread Model:
    - Caller thread(s): post() envelopes, never touch the engine
    - Worker thread: creates, uses and closes the engine

Lifecycle:
    The thread stops after answering a ``close`` request, after stop(),
    or if the loop itself crashes. In every case ``on_exit`` runs last,
    with the crash exception (or None), so the channel can fail whatever
    is still pending.
"""

from __future__ import annotations

import queue
import threading
import traceback
from collections.abc import Callable
from pathlib import Path
from typing import Any, assert_never

import structlog

from squeel.contracts.engine import EngineProtocol
from squeel.contracts.errors import ChannelClosedError, EngineError, MigrationError, ProtocolError
from squeel.contracts.protocol import (
    CloseRequest,
    Envelope,
    ErrorPayload,
    ErrorResponse,
    ExecRequest,
    ExecResultResponse,
    ExportRequest,
    ExportResultResponse,
    ImportRequest,
    InitRequest,
    QueryRequest,
    QueryResultResponse,
    ReadyResponse,
    Request,
    Response,
    TransactionRequest,
    decode_request,
)
from squeel.engine.atomic import execute_batch
from squeel.engine.migrations import apply_migrations

logger = structlog.get_logger(__name__)

EngineFactory = Callable[[], EngineProtocol]
ReplyCallback = Callable[[dict[str, Any]], None]
ExitCallback = Callable[[BaseException | None], None]

# Posted to the inbox to stop the loop without a close request
_STOP = None


class DatabaseWorker:
    """Owns one engine on one thread and answers request envelopes.

    Example:
        channel = CorrelationChannel()
        worker = DatabaseWorker(SQLiteEngine, channel.deliver, on_exit=channel.terminate)
        channel.bind(worker)
        worker.start()
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        reply: ReplyCallback,
        *,
        on_exit: ExitCallback | None = None,
        name: str = "squeel-worker",
    ) -> None:
        self._engine_factory = engine_factory
        self._reply = reply
        self._on_exit = on_exit
        self._inbox: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._engine: EngineProtocol | None = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def name(self) -> str:
        return self._thread.name

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()
        logger.debug("Worker started", worker=self.name)

    def post(self, message: dict[str, Any]) -> None:
        """Queue an envelope for processing.

        Raises:
            ChannelClosedError: If the worker has already stopped
        """
        if self._stopped.is_set():
            raise ChannelClosedError(f"Worker {self.name!r} has stopped")
        self._inbox.put(message)

    def stop(self) -> None:
        """Stop after the envelopes already queued. Does not wait."""
        self._inbox.put(_STOP)

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout)

    # =========================================================================
    # Worker thread
    # =========================================================================

    def _run(self) -> None:
        crash: BaseException | None = None
        try:
            while True:
                message = self._inbox.get()
                if message is _STOP:
                    break
                if self._handle(message):
                    break
        except BaseException as exc:
            crash = exc
            logger.error("Worker crashed", worker=self.name, error=str(exc), exc_info=True)
            raise
        finally:
            self._stopped.set()
            try:
                self._close_engine()
            except Exception as exc:
                logger.error("Engine close failed", worker=self.name, error=str(exc), exc_info=True)
                if crash is None:
                    crash = exc
            finally:
                # Pending callers are only released by on_exit
                logger.debug("Worker stopped", worker=self.name)
                if self._on_exit is not None:
                    self._on_exit(crash)

    def _handle(self, message: dict[str, Any]) -> bool:
        """Process one envelope. Returns True when the loop should stop."""
        try:
            envelope_id, request = decode_request(message)
        except ProtocolError as exc:
            logger.debug("Discarding envelope", worker=self.name, error=str(exc))
            return False

        response = self._respond(request)
        self._reply(Envelope(id=envelope_id, response=response).to_wire())
        return isinstance(request, CloseRequest)

    def _respond(self, request: Request) -> Response:
        try:
            return self._dispatch(request)
        except MigrationError as exc:
            return ErrorResponse(
                error=ErrorPayload(message=exc.message, trace=exc.trace, kind=exc.kind, migration_id=exc.migration_id)
            )
        except EngineError as exc:
            return ErrorResponse(error=ErrorPayload(message=exc.message, trace=exc.trace, kind=exc.kind))
        except Exception as exc:
            # Bugs in an engine implementation still answer the caller
            return ErrorResponse(error=ErrorPayload(message=str(exc) or type(exc).__name__, trace=traceback.format_exc()))

    def _dispatch(self, request: Request) -> Response:
        match request:
            case InitRequest():
                return ReadyResponse(applied_migrations=self._init(request))
            case QueryRequest(sql=sql, params=params):
                return QueryResultResponse(rows=self._require_engine().query(sql, params))
            case ExecRequest(sql=sql, params=params):
                result = self._require_engine().exec(sql, params)
                return ExecResultResponse(changes=result.changes, last_insert_id=result.last_insert_id)
            case TransactionRequest(statements=statements):
                changes = execute_batch(self._require_engine(), statements)
                return ExecResultResponse(changes=changes)
            case ExportRequest():
                return ExportResultResponse(data=self._require_engine().export())
            case ImportRequest(data=data):
                self._require_engine().import_bytes(data)
                return ReadyResponse()
            case CloseRequest():
                self._close_engine()
                return ReadyResponse()
            case _:
                assert_never(request)

    def _init(self, request: InitRequest) -> list[int]:
        if self._engine is None:
            self._engine = self._engine_factory()
        self._engine.init(
            request.db_name,
            request.storage,
            data_dir=Path(request.data_dir) if request.data_dir is not None else None,
            pragma=request.pragma,
        )
        try:
            return apply_migrations(self._engine, request.migrations)
        except MigrationError:
            # A database that failed to migrate is not usable
            self._close_engine()
            raise

    def _require_engine(self) -> EngineProtocol:
        if self._engine is None:
            raise EngineError("Database is not initialized; call init() first")
        return self._engine

    def _close_engine(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            engine.close()
