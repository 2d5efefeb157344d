"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core,
engine or client. Settings classes are NOT re-exported here - import them
from squeel.core.config.

Import patterns:
    from squeel.contracts import ExecResult, TableDependencies, EngineError
    from squeel.contracts.protocol import Envelope, QueryRequest
"""

from squeel.contracts.engine import EngineProtocol
from squeel.contracts.errors import (
    ChannelClosedError,
    EngineError,
    MigrationError,
    ProtocolError,
    SqueelError,
    TransactionError,
)
from squeel.contracts.types import (
    WILDCARD,
    ExecResult,
    Migration,
    SqlStatement,
    SqlValue,
    StagedExecResult,
    StorageMode,
    TableDependencies,
)

__all__ = [
    "WILDCARD",
    "ChannelClosedError",
    "EngineError",
    "EngineProtocol",
    "ExecResult",
    "Migration",
    "MigrationError",
    "ProtocolError",
    "SqlStatement",
    "SqlValue",
    "SqueelError",
    "StagedExecResult",
    "StorageMode",
    "TableDependencies",
    "TransactionError",
]
