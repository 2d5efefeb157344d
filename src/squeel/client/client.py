# src/squeel/client/client.py
"""SqueelClient: the caller-facing facade.

Owns one DatabaseWorker (and therefore one engine), the CorrelationChannel
to it, and the InvalidationBus that live queries listen on. Every
committed write publishes the tables it changed; with multi_tab enabled
the same set is broadcast to peer clients of the same database.

Example:
    settings = SqueelSettings(db_name="todos", migrations=(Migration(id=1, up=SCHEMA),))
    async with create_client(settings) as client:
        await client.exec("INSERT INTO todos (title) VALUES (?)", ["write docs"])
        rows = await client.query("SELECT * FROM todos")
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import structlog

from squeel.client.subscriptions import LiveQuery, resolve_live_dependencies
from squeel.client.transaction import TransactionScope
from squeel.contracts.engine import EngineProtocol
from squeel.contracts.errors import ChannelClosedError, SqueelError
from squeel.contracts.protocol import (
    CloseRequest,
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
)
from squeel.contracts.types import ExecResult, SqlStatement, TableDependencies
from squeel.core.broadcast import Broadcaster, BroadcastHub
from squeel.core.config import SqueelSettings, load_settings
from squeel.core.dependency import resolve_dependencies
from squeel.core.events import InvalidationBus, InvalidationHandler
from squeel.core.sql import as_statement
from squeel.engine.channel import CorrelationChannel
from squeel.engine.sqlite import SQLiteEngine
from squeel.engine.worker import DatabaseWorker

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=Response)


class SqueelClient:
    """Async client for one logical database.

    The worker thread starts on construction; call ``init()`` (or use
    ``async with``) before issuing queries. All coroutine methods must be
    awaited on the same event loop.
    """

    def __init__(
        self,
        settings: SqueelSettings,
        *,
        engine_factory: Callable[[], EngineProtocol] = SQLiteEngine,
        hub: BroadcastHub | None = None,
    ) -> None:
        self.settings = settings
        self._hub = hub
        self._channel = CorrelationChannel()
        self._worker = DatabaseWorker(
            engine_factory,
            self._channel.deliver,
            on_exit=self._channel.terminate,
            name=f"squeel-worker:{settings.db_name}",
        )
        self._channel.bind(self._worker)
        self._bus = InvalidationBus()
        self._init_task: asyncio.Task[list[int]] | None = None
        self._live_queries: set[LiveQuery] = set()
        self._closed = False
        self.applied_migrations: list[int] = []
        self._worker.start()

    @property
    def bus(self) -> InvalidationBus:
        return self._bus

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> list[int]:
        """Open the database and apply pending migrations.

        Idempotent: concurrent and repeated calls share one init task, and
        a failed init keeps raising the same error.

        Returns:
            Ids of migrations applied by the (single) init run

        Raises:
            MigrationError: If a migration failed; the client is unusable
        """
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> list[int]:
        settings = self.settings
        migrations = await asyncio.to_thread(settings.all_migrations)
        request = InitRequest(
            db_name=settings.db_name,
            storage=settings.storage,
            data_dir=str(settings.data_dir),
            pragma=dict(settings.pragma),
            migrations=migrations,
        )
        response = await self._request(request, ReadyResponse)
        self.applied_migrations = list(response.applied_migrations)

        if settings.multi_tab.enabled:
            self._bus.attach_broadcaster(Broadcaster(settings.channel_name, self._on_peer_change, hub=self._hub))

        logger.info(
            "Client ready",
            db_name=settings.db_name,
            storage=str(settings.storage),
            applied_migrations=self.applied_migrations,
            multi_tab=settings.multi_tab.enabled,
        )
        return self.applied_migrations

    async def close(self) -> None:
        """Close live queries, the bus and the worker. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for live in list(self._live_queries):
            await live.close()
        self._live_queries.clear()
        self._bus.close()
        try:
            await self._channel.send(CloseRequest())
        except ChannelClosedError:
            logger.debug("Worker already stopped", db_name=self.settings.db_name)
        await asyncio.to_thread(self._worker.join)

    async def __aenter__(self) -> SqueelClient:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # =========================================================================
    # Reads and writes
    # =========================================================================

    async def query(self, sql: str | SqlStatement, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        statement = as_statement(sql, params)
        response = await self._request(QueryRequest(sql=statement.sql, params=list(statement.params)), QueryResultResponse)
        return response.rows

    async def exec(self, sql: str | SqlStatement, params: Sequence[Any] = ()) -> ExecResult:
        """Execute a write and publish the tables it touched.

        An exception from an ``on_invalidate`` handler is raised here after
        the write has committed and peers have been notified; do not retry.
        """
        statement = as_statement(sql, params)
        response = await self._request(ExecRequest(sql=statement.sql, params=list(statement.params)), ExecResultResponse)
        self._bus.publish(resolve_dependencies(statement.sql))
        return ExecResult(changes=response.changes, last_insert_id=response.last_insert_id)

    async def transaction(self, fn: Callable[[TransactionScope], T | Awaitable[T]]) -> T:
        """Run ``fn`` with a staging scope, then commit its writes atomically.

        ``fn`` may be a plain function or a coroutine function. Writes
        staged through ``scope.exec`` run on the worker inside one
        BEGIN IMMEDIATE ... COMMIT after ``fn`` returns; reads through
        ``scope.query`` see committed state only.

        If ``fn`` raises, nothing is sent. Exactly one invalidation is
        published after a successful commit (handler errors as in exec()).

        Raises:
            TransactionError: If a staged statement failed (all rolled back)
        """
        scope = TransactionScope(self._read)
        try:
            outcome = fn(scope)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        finally:
            scope.seal()

        if len(scope) == 0:
            return outcome  # type: ignore[return-value]

        await self._request(TransactionRequest(statements=scope.statements), ExecResultResponse)
        self._bus.publish(scope.changed_tables())
        return outcome  # type: ignore[return-value]

    async def export_bytes(self) -> bytes:
        """Serialized image of the whole database."""
        response = await self._request(ExportRequest(), ExportResultResponse)
        return response.data

    async def import_bytes(self, data: bytes) -> None:
        """Replace the database contents; every table is considered changed."""
        await self._request(ImportRequest(data=data), ReadyResponse)
        self._bus.publish(TableDependencies.any())

    # =========================================================================
    # Invalidation and live queries
    # =========================================================================

    def on_invalidate(self, handler: InvalidationHandler) -> Callable[[], None]:
        """Register for changed-table notifications (local and peer)."""
        return self._bus.subscribe(handler)

    def live_query(
        self,
        sql: str | SqlStatement,
        params: Sequence[Any] = (),
        *,
        depends_on: Iterable[str] | None = None,
        single: bool = False,
        default: Any = None,
        validate: Callable[[list[dict[str, Any]]], Any] | None = None,
    ) -> LiveQuery:
        """Create a LiveQuery bound to this client (not started).

        Start it with ``start()`` or by entering it with ``async with``.
        The client closes it on ``close()``; a closed query is forgotten.
        """
        statement = as_statement(sql, params)
        dependencies = resolve_live_dependencies(statement, depends_on, self.settings.subscriptions.default_depends_on)
        live = LiveQuery(
            self,
            statement,
            dependencies,
            single=single,
            default=default,
            validate=validate,
            on_close=self._live_queries.discard,
        )
        self._live_queries.add(live)
        return live

    # =========================================================================
    # Internals
    # =========================================================================

    async def _read(self, statement: SqlStatement) -> list[dict[str, Any]]:
        return await self.query(statement)

    async def _request(self, request: Request, expected: type[R]) -> R:
        response = await self._channel.send(request)
        if not isinstance(response, expected):
            raise SqueelError(f"Unexpected {response.type!r} response to {request.type!r} request")
        return response

    def _on_peer_change(self, changed: TableDependencies) -> None:
        logger.debug("Peer change received", db_name=self.settings.db_name, tables=changed.to_wire())
        self._bus.publish(changed, broadcast=False)


def create_client(
    settings: SqueelSettings | Path | str,
    *,
    engine_factory: Callable[[], EngineProtocol] = SQLiteEngine,
    hub: BroadcastHub | None = None,
) -> SqueelClient:
    """Build a client from settings or a settings file path. Call init() next."""
    if not isinstance(settings, SqueelSettings):
        settings = load_settings(Path(settings))
    return SqueelClient(settings, engine_factory=engine_factory, hub=hub)
