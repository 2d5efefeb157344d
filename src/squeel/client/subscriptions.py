# src/squeel/client/subscriptions.py
"""Reactive subscriptions: queries that re-run when their tables change.

A LiveQuery resolves its dependency set exactly once, registers on the
client's invalidation bus and re-evaluates whenever a published change
intersects that set. Consecutive results with an identical fingerprint
are not re-delivered.

State machine:
    LOADING -> READY | ERROR
    READY   -> READY | ERROR
    ERROR   -> READY | ERROR

Failures never raise into listeners; they become the ERROR state with
the last good data kept.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, Protocol

import structlog

from squeel.contracts.types import SqlStatement, TableDependencies
from squeel.core.canonical import result_fingerprint
from squeel.core.dependency import resolve_dependencies

logger = structlog.get_logger(__name__)


class QueryStatus(StrEnum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class QueryState:
    """Snapshot delivered to listeners."""

    status: QueryStatus
    data: Any = None
    error: BaseException | None = None


Listener = Callable[[QueryState], None]


class QuerySource(Protocol):
    """The parts of SqueelClient a live query needs."""

    async def query(self, sql: str | SqlStatement, params: Sequence[Any] = ()) -> list[dict[str, Any]]: ...

    def on_invalidate(self, handler: Callable[[TableDependencies], None]) -> Callable[[], None]: ...


def resolve_live_dependencies(
    statement: SqlStatement,
    depends_on: Iterable[str] | None,
    default_depends_on: Literal["parsed", "all"],
) -> TableDependencies:
    """Decide which tables a live query listens to.

    An explicit ``depends_on`` wins (``"*"`` meaning every table). Without
    one, ``default_depends_on="all"`` listens to everything and
    ``"parsed"`` uses the tables extracted from the SQL.
    """
    if depends_on is not None:
        explicit = TableDependencies.of(depends_on)
        return explicit if explicit else TableDependencies.any()
    if default_depends_on == "all":
        return TableDependencies.any()
    return resolve_dependencies(statement.sql)


class LiveQuery:
    """A query kept fresh by invalidation notifications.

    Usage:
        async with client.live_query("SELECT * FROM todos") as todos:
            todos.subscribe(lambda state: render(state.data))
            ...

    Args:
        source: Client to query and to listen on
        statement: The query
        dependencies: Tables this query reads (see resolve_live_dependencies)
        single: Deliver the first row (or None) instead of the row list
        default: Data reported while loading
        validate: Called with the row list before ``single`` is applied;
            its return value becomes the data
        fingerprint: Change-detection hash of the delivered data
        on_close: Called once with this query when it is closed
    """

    def __init__(
        self,
        source: QuerySource,
        statement: SqlStatement,
        dependencies: TableDependencies,
        *,
        single: bool = False,
        default: Any = None,
        validate: Callable[[list[dict[str, Any]]], Any] | None = None,
        fingerprint: Callable[[Any], str] = result_fingerprint,
        on_close: Callable[[LiveQuery], None] | None = None,
    ) -> None:
        self._source = source
        self._statement = statement
        self._dependencies = dependencies
        self._single = single
        self._validate = validate
        self._fingerprint = fingerprint
        self._on_close = on_close
        self._state = QueryState(status=QueryStatus.LOADING, data=default)
        self._last_fingerprint: str | None = None
        self._listeners: dict[int, Listener] = {}
        self._next_token = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._unregister: Callable[[], None] | None = None
        self._closed = False

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def dependencies(self) -> TableDependencies:
        return self._dependencies

    @property
    def statement(self) -> SqlStatement:
        return self._statement

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes. Returns an unsubscribe callable."""
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def start(self) -> asyncio.Task[None]:
        """Register on the bus and run the first evaluation."""
        if self._closed:
            raise RuntimeError("LiveQuery is closed")
        if self._unregister is None:
            self._unregister = self._source.on_invalidate(self._on_invalidate)
        return self._schedule()

    def refetch(self) -> asyncio.Task[None]:
        """Re-run the query regardless of invalidations."""
        if self._closed:
            raise RuntimeError("LiveQuery is closed")
        return self._schedule()

    async def settled(self) -> None:
        """Wait until no evaluation is in flight (including ones started meanwhile)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()
        if self._on_close is not None:
            self._on_close(self)

    async def __aenter__(self) -> LiveQuery:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _on_invalidate(self, changed: TableDependencies) -> None:
        if self._closed or not changed.intersects(self._dependencies):
            return
        self._schedule()

    def _schedule(self) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self._evaluate())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _evaluate(self) -> None:
        try:
            rows = await self._source.query(self._statement)
            data: Any = rows
            if self._validate is not None:
                data = self._validate(rows)
            if self._single:
                data = data[0] if data else None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Live query failed", sql=self._statement.sql, error=str(exc))
            self._deliver(QueryState(status=QueryStatus.ERROR, data=self._state.data, error=exc))
            return

        fingerprint = self._fingerprint(data)
        if self._state.status == QueryStatus.READY and fingerprint == self._last_fingerprint:
            return
        self._last_fingerprint = fingerprint
        self._deliver(QueryState(status=QueryStatus.READY, data=data))

    def _deliver(self, state: QueryState) -> None:
        if self._closed:
            return
        self._state = state
        for listener in list(self._listeners.values()):
            listener(state)
