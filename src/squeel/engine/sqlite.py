# src/squeel/engine/sqlite.py
"""SQLite engine backed by SQLAlchemy and the stdlib sqlite3 driver.

The worker thread creates, uses and closes this engine; it is never
touched from any other thread.

Transaction control is explicit: the connection runs in AUTOCOMMIT mode
(pysqlite ``isolation_level=None``) so that BEGIN IMMEDIATE / COMMIT /
ROLLBACK issued through exec() are passed straight to SQLite instead of
being managed by the driver.
"""

from __future__ import annotations

import re
import sqlite3
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import Connection, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool

from squeel.contracts.errors import EngineError
from squeel.contracts.types import ExecResult, StorageMode
from squeel.core.dependency import strip_noise

logger = structlog.get_logger(__name__)

_PRAGMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PRAGMA_VALUE = re.compile(r"^-?[A-Za-z0-9_.]+$")


def split_script(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    Uses sqlite3.complete_statement() so that semicolons inside string
    literals, comments and trigger bodies (BEGIN ... END;) do not split.
    Comment-only fragments are dropped. Trailing text without a final
    semicolon is kept as the last statement.
    """
    statements: list[str] = []

    def _append(fragment: str) -> None:
        if strip_noise(fragment).strip().strip(";").strip():
            statements.append(fragment.strip())

    pieces = script.split(";")
    buffer = ""
    for index, piece in enumerate(pieces):
        buffer += piece
        if index == len(pieces) - 1:
            break
        buffer += ";"
        if sqlite3.complete_statement(buffer):
            _append(buffer)
            buffer = ""
    _append(buffer)
    return statements


def _check_pragma(name: str, value: str | int) -> None:
    if not _PRAGMA_NAME.match(name) or not _PRAGMA_VALUE.match(str(value)):
        raise EngineError(f"Invalid pragma setting: {name}={value!r}")


class SQLiteEngine:
    """EngineProtocol implementation for SQLite."""

    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._conn: Connection | None = None
        self.db_name: str | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def init(
        self,
        db_name: str,
        storage: StorageMode,
        *,
        data_dir: Path | None = None,
        pragma: Mapping[str, str | int] | None = None,
    ) -> None:
        """Open the database. A second call on an open engine is a no-op."""
        if self._conn is not None:
            return

        pragmas = dict(pragma or {})
        for name, value in pragmas.items():
            _check_pragma(name, value)

        if storage == StorageMode.MEMORY:
            engine = create_engine("sqlite://", echo=False, poolclass=StaticPool)
        else:
            path = (data_dir or Path(".")) / f"{db_name}.sqlite3"
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(f"sqlite:///{path.as_posix()}", echo=False, poolclass=StaticPool)

        SQLiteEngine._configure_sqlite(engine, pragmas)
        try:
            self._conn = engine.connect().execution_options(isolation_level="AUTOCOMMIT")
        except DBAPIError as exc:
            engine.dispose()
            raise EngineError(str(exc.orig)) from exc
        self._engine = engine
        self.db_name = db_name
        logger.info("SQLite engine opened", db_name=db_name, storage=str(storage), pragmas=sorted(pragmas))

    @staticmethod
    def _configure_sqlite(engine: Engine, pragmas: Mapping[str, str | int]) -> None:
        """Register a connect hook that applies pragmas.

        foreign_keys=ON is always set; configured pragmas run afterwards
        and may override it.
        """

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            for name, value in pragmas.items():
                cursor.execute(f"PRAGMA {name}={value}")
            cursor.close()

    def _connection(self) -> Connection:
        if self._conn is None:
            raise EngineError("Database is not initialized; call init() first")
        return self._conn

    def _driver_connection(self) -> sqlite3.Connection:
        raw = self._connection().connection.driver_connection
        if not isinstance(raw, sqlite3.Connection):
            raise EngineError("SQLite driver connection is unavailable")
        return raw

    def query(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        conn = self._connection()
        try:
            result = conn.exec_driver_sql(sql, tuple(params))
            if not result.returns_rows:
                return []
            return [dict(row) for row in result.mappings()]
        except DBAPIError as exc:
            raise EngineError(str(exc.orig)) from exc

    def exec(self, sql: str, params: Sequence[Any]) -> ExecResult:
        """Execute one statement, or a parameterless multi-statement script.

        ``changes`` is the sum of rows affected by every statement;
        ``last_insert_id`` is the connection's last inserted rowid.
        """
        conn = self._connection()
        statements = split_script(sql)
        if len(statements) > 1 and params:
            raise EngineError("Parameters cannot be bound to a multi-statement script")

        changes = 0
        last_insert_id: int | None = None
        try:
            for statement in statements:
                result = conn.exec_driver_sql(statement, tuple(params))
                if result.rowcount > 0:
                    changes += result.rowcount
                last_insert_id = result.lastrowid or None
                result.close()
        except DBAPIError as exc:
            raise EngineError(str(exc.orig)) from exc
        return ExecResult(changes=changes, last_insert_id=last_insert_id)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("SQLite engine closed", db_name=self.db_name)

    def export(self) -> bytes:
        try:
            return self._driver_connection().serialize()
        except sqlite3.Error as exc:
            raise EngineError(str(exc)) from exc

    def import_bytes(self, data: bytes) -> None:
        """Replace the database contents with a serialized image.

        The image is deserialized into a scratch connection and copied with
        the backup API; deserializing straight into a file-backed connection
        would detach it from its file.
        """
        raw = self._driver_connection()
        if raw.in_transaction:
            raise EngineError("Cannot import while a transaction is open")
        scratch = sqlite3.connect(":memory:")
        try:
            scratch.deserialize(data)
            scratch.backup(raw)
        except sqlite3.Error as exc:
            raise EngineError(str(exc)) from exc
        finally:
            scratch.close()
