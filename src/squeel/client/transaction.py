# src/squeel/client/transaction.py
"""TransactionScope: the staging half of a two-phase transaction.

Writes issued through the scope are not executed; they are recorded and
later shipped to the worker as a single ``transaction`` request. Reads go
straight to the worker and therefore see committed state only - a
query inside the scope does NOT observe the scope's own staged writes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from squeel.contracts.protocol import StatementPayload
from squeel.contracts.types import SqlStatement, StagedExecResult, TableDependencies
from squeel.core.dependency import resolve_dependencies
from squeel.core.sql import as_statement

Reader = Callable[[SqlStatement], Awaitable[list[dict[str, Any]]]]


class TransactionScope:
    """Collects writes for one transaction. Single use."""

    def __init__(self, reader: Reader) -> None:
        self._reader = reader
        self._staged: list[SqlStatement] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def exec(self, sql: str | SqlStatement, params: Sequence[Any] = ()) -> StagedExecResult:
        """Stage a write. Returns a placeholder; nothing has run yet.

        Raises:
            RuntimeError: If the scope has already been committed or abandoned
        """
        if self._sealed:
            raise RuntimeError("Transaction scope is closed; statements can no longer be staged")
        self._staged.append(as_statement(sql, params))
        return StagedExecResult(index=len(self._staged) - 1)

    async def query(self, sql: str | SqlStatement, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return await self._reader(as_statement(sql, params))

    @property
    def statements(self) -> list[StatementPayload]:
        return [StatementPayload(sql=s.sql, params=list(s.params)) for s in self._staged]

    def changed_tables(self) -> TableDependencies:
        """Union of every staged statement's tables (wildcard if any is unknown)."""
        changed = TableDependencies()
        for statement in self._staged:
            changed = changed.union(resolve_dependencies(statement.sql))
        return changed

    def seal(self) -> None:
        self._sealed = True

    def __len__(self) -> int:
        return len(self._staged)
