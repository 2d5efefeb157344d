# src/squeel/core/sql.py
"""Helpers for building and normalizing SQL statements.

Every client entry point accepts either ``(sql, params)`` or a ready-made
SqlStatement (for example the output of a query-builder adapter).
"""

from collections.abc import Sequence
from typing import Any

from squeel.contracts.types import SqlStatement


def sql(text: str, *params: Any) -> SqlStatement:
    """Build a statement from SQL text and positional parameters.

    Example:
        >>> stmt = sql("SELECT * FROM todos WHERE id = ?", 3)
        >>> stmt.params
        (3,)
    """
    return SqlStatement(sql=text, params=params)


def as_statement(sql_or_stmt: str | SqlStatement, params: Sequence[Any] = ()) -> SqlStatement:
    """Normalize the two accepted call shapes into a SqlStatement.

    Raises:
        TypeError: If a SqlStatement is combined with separate params
    """
    if isinstance(sql_or_stmt, SqlStatement):
        if params:
            raise TypeError("params must not be passed separately when a SqlStatement is given")
        return sql_or_stmt
    return SqlStatement(sql=sql_or_stmt, params=tuple(params))
