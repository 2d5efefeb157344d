# src/squeel/engine/__init__.py
"""Worker-side machinery: the engine, its thread, and the channel to it.

Exports:
- SQLiteEngine: EngineProtocol implementation (SQLAlchemy + sqlite3)
- DatabaseWorker: Thread that owns an engine and answers envelopes
- CorrelationChannel: Caller-side request/response matching
- apply_migrations: Versioned schema evolution with a ledger table
- atomic, execute_batch: BEGIN IMMEDIATE / COMMIT / ROLLBACK helpers
"""

from squeel.engine.atomic import atomic, execute_batch
from squeel.engine.channel import CorrelationChannel
from squeel.engine.migrations import LEDGER_TABLE, applied_migration_ids, apply_migrations
from squeel.engine.sqlite import SQLiteEngine, split_script
from squeel.engine.worker import DatabaseWorker

__all__ = [
    "LEDGER_TABLE",
    "CorrelationChannel",
    "DatabaseWorker",
    "SQLiteEngine",
    "applied_migration_ids",
    "apply_migrations",
    "atomic",
    "execute_batch",
    "split_script",
]
