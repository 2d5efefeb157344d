# src/squeel/contracts/types.py
"""Value types that cross the client/worker boundary."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# Sentinel table name meaning "assume every table may have changed"
WILDCARD = "*"

SqlValue = None | int | float | str | bytes | bool


class StorageMode(StrEnum):
    """Where the engine keeps its data."""

    MEMORY = "memory"
    FILE = "file"


class Migration(BaseModel):
    """A versioned schema change.

    ``id`` is the authoritative ordering key; list position is ignored.
    Migrations are immutable once applied.
    """

    model_config = {"frozen": True}

    id: int = Field(ge=1, description="Monotonically increasing version number")
    up: str = Field(min_length=1, description="SQL script applied when migrating forward")
    down: str | None = Field(default=None, description="Stored but never run automatically")
    name: str | None = Field(default=None, description="Optional label, e.g. from the file name")


class SqlStatement(BaseModel):
    """SQL text plus its positional parameters."""

    model_config = {"frozen": True}

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Outcome of an executed write."""

    changes: int
    last_insert_id: int | None = None

    @property
    def staged(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class StagedExecResult:
    """Placeholder returned when a write is staged inside a transaction.

    Nothing has executed yet, so ``changes`` is always zero. Use
    ``staged`` or an isinstance check to tell it apart from ExecResult.
    """

    index: int

    @property
    def changes(self) -> int:
        return 0

    @property
    def last_insert_id(self) -> None:
        return None

    @property
    def staged(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class TableDependencies:
    """A set of table names, or the wildcard meaning "all tables".

    Used both for the tables a query reads and for the tables a write
    changed. Intersection with the wildcard on either side is always
    relevant.

    Example:
        >>> TableDependencies.of(["Orders"]).intersects(TableDependencies.any())
        True
    """

    tables: frozenset[str] = frozenset()
    wildcard: bool = False

    @classmethod
    def any(cls) -> TableDependencies:
        return cls(wildcard=True)

    @classmethod
    def of(cls, names: Iterable[str]) -> TableDependencies:
        """Build from names; a ``"*"`` entry turns the set into the wildcard."""
        lowered = frozenset(name.lower() for name in names)
        if WILDCARD in lowered:
            return cls.any()
        return cls(tables=lowered)

    @classmethod
    def from_wire(cls, names: Sequence[str]) -> TableDependencies:
        return cls.of(names)

    def to_wire(self) -> list[str]:
        if self.wildcard:
            return [WILDCARD]
        return sorted(self.tables)

    def intersects(self, other: TableDependencies) -> bool:
        if self.wildcard or other.wildcard:
            return True
        return not self.tables.isdisjoint(other.tables)

    def union(self, other: TableDependencies) -> TableDependencies:
        if self.wildcard or other.wildcard:
            return TableDependencies.any()
        return TableDependencies(tables=self.tables | other.tables)

    def __bool__(self) -> bool:
        return self.wildcard or bool(self.tables)

    def __str__(self) -> str:
        return ",".join(self.to_wire())
