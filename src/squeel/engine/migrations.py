# src/squeel/engine/migrations.py
"""Versioned schema evolution.

The ledger table records which migrations this system has applied. Rows
are written once and never updated or deleted. A migration that predates
the ledger is simply absent from it; the applier only reasons about ids
it finds there.

Ordering: migrations run in ascending ``id`` order. The order of the list
handed in is irrelevant.

Atomicity: each migration's ``up`` script and its ledger row are committed
together. The first failure rolls back that migration and aborts the
whole sequence - later migrations never run.
"""

from collections.abc import Sequence
from datetime import UTC, datetime

import structlog

from squeel.contracts.engine import EngineProtocol
from squeel.contracts.errors import EngineError, MigrationError
from squeel.contracts.types import Migration
from squeel.engine.atomic import atomic

logger = structlog.get_logger(__name__)

LEDGER_TABLE = "__squeel_migrations"

_CREATE_LEDGER = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    id INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
)
"""


def applied_migration_ids(engine: EngineProtocol) -> set[int]:
    """Ids recorded in the ledger (creating the ledger if needed)."""
    engine.exec(_CREATE_LEDGER, [])
    rows = engine.query(f"SELECT id FROM {LEDGER_TABLE}", [])
    return {int(row["id"]) for row in rows}


def apply_migrations(engine: EngineProtocol, migrations: Sequence[Migration]) -> list[int]:
    """Bring the database up to the newest migration in ``migrations``.

    Idempotent: calling again with the same list applies nothing.
    ``down`` scripts are never executed here.

    Args:
        engine: Initialized engine
        migrations: Migrations in any order

    Returns:
        Ids applied by this call, ascending

    Raises:
        MigrationError: On duplicate ids (before anything runs) or when a
            migration's up script fails (carrying that migration's id)
    """
    ids = [m.id for m in migrations]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise MigrationError(f"Duplicate migration ids: {duplicates}", migration_id=duplicates[0])

    applied = applied_migration_ids(engine)
    newly_applied: list[int] = []

    for migration in sorted(migrations, key=lambda m: m.id):
        if migration.id in applied:
            continue
        try:
            with atomic(engine):
                engine.exec(migration.up, [])
                engine.exec(
                    f"INSERT INTO {LEDGER_TABLE} (id, applied_at) VALUES (?, ?)",
                    [migration.id, datetime.now(UTC).isoformat()],
                )
        except EngineError as exc:
            logger.error("Migration failed", migration_id=migration.id, name=migration.name, error=exc.message)
            raise MigrationError(exc.message, migration_id=migration.id, trace=exc.trace) from exc
        newly_applied.append(migration.id)
        logger.info("Applied migration", migration_id=migration.id, name=migration.name)

    return newly_applied
