# src/squeel/contracts/engine.py
"""EngineProtocol: the embedded relational engine collaborator.

The worker owns exactly one engine and is the only caller. Nothing in
the client depends on engine internals beyond this protocol.
"""

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from squeel.contracts.types import ExecResult, StorageMode


@runtime_checkable
class EngineProtocol(Protocol):
    """Protocol for engine implementations.

    ``exec`` must accept multi-statement scripts when ``params`` is empty,
    because migration ``up`` scripts are executed through it.
    """

    def init(
        self,
        db_name: str,
        storage: StorageMode,
        *,
        data_dir: Path | None = None,
        pragma: Mapping[str, str | int] | None = None,
    ) -> None:
        """Open (or create) the database."""
        ...

    def query(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        """Run a read and return rows as column-name mappings."""
        ...

    def exec(self, sql: str, params: Sequence[Any]) -> ExecResult:
        """Run a write (or script) and report affected rows."""
        ...

    def close(self) -> None:
        """Release the database handle."""
        ...

    def export(self) -> bytes:
        """Serialize the whole database image."""
        ...

    def import_bytes(self, data: bytes) -> None:
        """Replace the database contents with a serialized image."""
        ...
