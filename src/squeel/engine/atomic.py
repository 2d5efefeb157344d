# src/squeel/engine/atomic.py
"""Atomic units of work against an engine.

Shared by the staged-transaction handler and the migration applier. Both
go through EngineProtocol.exec so any engine implementation gets the same
BEGIN IMMEDIATE / COMMIT / ROLLBACK sequence.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import structlog

from squeel.contracts.engine import EngineProtocol
from squeel.contracts.errors import EngineError, TransactionError
from squeel.contracts.protocol import StatementPayload

logger = structlog.get_logger(__name__)


def _rollback(engine: EngineProtocol) -> None:
    try:
        engine.exec("ROLLBACK", [])
    except EngineError as exc:
        # SQLite already rolled back on its own (e.g. SQLITE_FULL); the
        # original failure is what the caller needs to see.
        logger.warning("ROLLBACK failed", error=exc.message)


@contextmanager
def atomic(engine: EngineProtocol) -> Iterator[None]:
    """Run the block inside BEGIN IMMEDIATE ... COMMIT.

    Any exception in the block (or from COMMIT itself) issues ROLLBACK and
    re-raises the original exception unchanged.
    """
    engine.exec("BEGIN IMMEDIATE", [])
    try:
        yield
        engine.exec("COMMIT", [])
    except BaseException:
        _rollback(engine)
        raise


def execute_batch(engine: EngineProtocol, statements: Sequence[StatementPayload]) -> int:
    """Execute staged statements as one atomic unit.

    Returns:
        Total rows changed across all statements

    Raises:
        TransactionError: If any statement fails; nothing was committed
    """
    changes = 0
    index = 0
    try:
        with atomic(engine):
            for index, statement in enumerate(statements):
                changes += engine.exec(statement.sql, statement.params).changes
    except EngineError as exc:
        logger.info("Transaction rolled back", statement_index=index, statements=len(statements), error=exc.message)
        raise TransactionError(exc.message, trace=exc.trace) from exc
    logger.debug("Transaction committed", statements=len(statements), changes=changes)
    return changes
