# src/squeel/contracts/protocol.py
"""Message protocol spoken across the worker boundary.

Requests and responses are closed tagged unions (pydantic discriminated
unions keyed on ``type``). Every message travels inside an Envelope whose
``id`` correlates a request with its eventual response.

Wire format:
    Envelopes cross the boundary as plain dicts from ``model_dump()``.
    Binary payloads (export/import) stay raw ``bytes`` inside the dict;
    they are never base64-encoded.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from squeel.contracts.errors import ProtocolError
from squeel.contracts.types import Migration, StorageMode

_FROZEN = {"frozen": True}


# =============================================================================
# Requests
# =============================================================================


class StatementPayload(BaseModel):
    model_config = _FROZEN

    sql: str
    params: list[Any] = Field(default_factory=list)


class InitRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["init"] = "init"
    db_name: str
    storage: StorageMode
    data_dir: str | None = None
    pragma: dict[str, str | int] = Field(default_factory=dict)
    migrations: list[Migration] = Field(default_factory=list)


class QueryRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["query"] = "query"
    sql: str
    params: list[Any] = Field(default_factory=list)


class ExecRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["exec"] = "exec"
    sql: str
    params: list[Any] = Field(default_factory=list)


class TransactionRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["transaction"] = "transaction"
    statements: list[StatementPayload] = Field(min_length=1)


class CloseRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["close"] = "close"


class ExportRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["export"] = "export"


class ImportRequest(BaseModel):
    model_config = _FROZEN

    type: Literal["import"] = "import"
    data: bytes


Request = Annotated[
    InitRequest | QueryRequest | ExecRequest | TransactionRequest | CloseRequest | ExportRequest | ImportRequest,
    Field(discriminator="type"),
]


# =============================================================================
# Responses
# =============================================================================


class ReadyResponse(BaseModel):
    model_config = _FROZEN

    type: Literal["ready"] = "ready"
    applied_migrations: list[int] = Field(default_factory=list)


class QueryResultResponse(BaseModel):
    model_config = _FROZEN

    type: Literal["query_result"] = "query_result"
    rows: list[dict[str, Any]]


class ExecResultResponse(BaseModel):
    model_config = _FROZEN

    type: Literal["exec_result"] = "exec_result"
    changes: int
    last_insert_id: int | None = None


class ErrorPayload(BaseModel):
    model_config = _FROZEN

    message: str
    trace: str | None = None
    kind: Literal["engine", "transaction", "migration", "protocol"] = "engine"
    migration_id: int | None = None


class ErrorResponse(BaseModel):
    model_config = _FROZEN

    type: Literal["error"] = "error"
    error: ErrorPayload


class ExportResultResponse(BaseModel):
    model_config = _FROZEN

    type: Literal["export_result"] = "export_result"
    data: bytes


Response = Annotated[
    ReadyResponse | QueryResultResponse | ExecResultResponse | ErrorResponse | ExportResultResponse,
    Field(discriminator="type"),
]


# =============================================================================
# Envelope
# =============================================================================


class Envelope(BaseModel):
    """Unit of communication across the boundary.

    Exactly one of ``request``/``response`` is present.
    """

    model_config = _FROZEN

    id: str = Field(min_length=1)
    request: Request | None = None
    response: Response | None = None

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> Envelope:
        if (self.request is None) == (self.response is None):
            raise ValueError("envelope must carry exactly one of request or response")
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class PeerMessage(BaseModel):
    """Change notification broadcast to peer clients of the same database."""

    model_config = _FROZEN

    changed_tables: list[str]
    timestamp: float


def _decode(message: Any) -> Envelope:
    try:
        return Envelope.model_validate(message)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed envelope ({exc.error_count()} validation errors)") from exc


def decode_request(message: Any) -> tuple[str, Request]:
    """Validate an incoming request envelope.

    Raises:
        ProtocolError: If ``message`` is not an envelope carrying a request
    """
    envelope = _decode(message)
    if envelope.request is None:
        raise ProtocolError(f"Envelope {envelope.id!r} carries no request")
    return envelope.id, envelope.request


def decode_response(message: Any) -> tuple[str, Response]:
    """Validate an incoming response envelope.

    Raises:
        ProtocolError: If ``message`` is not an envelope carrying a response
    """
    envelope = _decode(message)
    if envelope.response is None:
        raise ProtocolError(f"Envelope {envelope.id!r} carries no response")
    return envelope.id, envelope.response
