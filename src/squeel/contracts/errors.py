# src/squeel/contracts/errors.py
"""Exception taxonomy shared by the client, channel and worker.

SqueelError
├── EngineError            SQL execution failed inside the worker
│   ├── TransactionError   a staged batch failed and was rolled back
│   └── MigrationError     a migration's up script failed; init is fatal
├── ChannelClosedError     the worker context is gone
└── ProtocolError          malformed envelope (logged and discarded)
"""

from typing import Literal

ErrorKind = Literal["engine", "transaction", "migration", "protocol"]


class SqueelError(Exception):
    """Base class for all squeel errors."""

    pass


class EngineError(SqueelError):
    """Raised when the engine fails to execute SQL.

    Attributes:
        message: The engine's own error message, unmodified
        trace: Formatted traceback from the worker, when available
    """

    kind: ErrorKind = "engine"

    def __init__(self, message: str, *, trace: str | None = None) -> None:
        self.message = message
        self.trace = trace
        super().__init__(message)


class TransactionError(EngineError):
    """Raised when a statement in a staged transaction fails.

    The whole batch has been rolled back by the time this reaches the
    caller. The message is the failing statement's engine message.
    """

    kind: ErrorKind = "transaction"


class MigrationError(EngineError):
    """Raised when a migration cannot be applied.

    The schema is left at the last successfully committed migration and
    no later migration has run.
    """

    kind: ErrorKind = "migration"

    def __init__(self, message: str, *, migration_id: int | None = None, trace: str | None = None) -> None:
        self.migration_id = migration_id
        super().__init__(message, trace=trace)


class ChannelClosedError(SqueelError):
    """Raised when a request cannot complete because the worker is gone."""

    pass


class ProtocolError(SqueelError):
    """Raised by decode_request/decode_response for malformed envelopes.

    Never surfaced to callers: receivers log and discard.
    """

    kind: ErrorKind = "protocol"


_ERRORS_BY_KIND: dict[str, type[EngineError]] = {
    "engine": EngineError,
    "transaction": TransactionError,
    "migration": MigrationError,
}


def error_class_for(kind: str) -> type[EngineError]:
    """Map a wire error kind back to its exception class.

    Unknown kinds (including "protocol") surface as plain EngineError so
    the caller still sees a rejected operation.
    """
    return _ERRORS_BY_KIND.get(kind, EngineError)
