# src/squeel/engine/channel.py
"""CorrelationChannel: exactly-once request/response matching.

Every outgoing request gets a fresh uuid4 id. The awaiting future is
registered under that id BEFORE the envelope is posted, so a response
that races ahead of the registration can never be lost.

Entries are popped exactly once. A response whose id has no entry (never
issued, already answered, or arriving after the channel closed) is
discarded. A future whose caller was cancelled is popped but never
resolved.

Thread Safety:
    send() and receive() run on the channel's event loop. deliver() and
    terminate() may be called from any thread (normally the worker) and
    hop onto the loop with call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Protocol

import structlog

from squeel.contracts.errors import ChannelClosedError, MigrationError, ProtocolError, error_class_for
from squeel.contracts.protocol import Envelope, ErrorResponse, Request, Response, decode_response

logger = structlog.get_logger(__name__)


class Transport(Protocol):
    """Where outgoing envelopes go (a DatabaseWorker in production)."""

    def post(self, message: dict[str, Any]) -> None: ...


class CorrelationChannel:
    """Matches response envelopes to the requests that caused them."""

    def __init__(self, transport: Transport | None = None) -> None:
        self._transport = transport
        self._pending: dict[str, asyncio.Future[Response]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False
        self._close_reason: BaseException | None = None

    def bind(self, transport: Transport) -> None:
        self._transport = transport

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send(self, request: Request) -> Response:
        """Post ``request`` and wait for its response.

        Raises:
            ChannelClosedError: If the worker context is gone, before or
                while waiting
            EngineError: (or a subclass) if the worker answered with an error
        """
        if self._closed:
            raise ChannelClosedError("Channel is closed") from self._close_reason
        if self._transport is None:
            raise RuntimeError("CorrelationChannel has no transport bound")

        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif self._loop is not loop:
            raise RuntimeError("CorrelationChannel is bound to a different event loop")

        envelope_id = uuid.uuid4().hex
        future: asyncio.Future[Response] = loop.create_future()
        self._pending[envelope_id] = future
        try:
            self._transport.post(Envelope(id=envelope_id, request=request).to_wire())
        except BaseException:
            self._pending.pop(envelope_id, None)
            raise
        return await future

    def deliver(self, message: dict[str, Any]) -> None:
        """Thread-safe entry point for response envelopes."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Discarding response with no live loop")
            return
        try:
            loop.call_soon_threadsafe(self.receive, message)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug("Discarding response for closed loop")

    def receive(self, message: Any) -> None:
        """Resolve the pending future matching ``message``. Loop thread only."""
        try:
            envelope_id, response = decode_response(message)
        except ProtocolError as exc:
            logger.debug("Discarding envelope", error=str(exc))
            return

        future = self._pending.pop(envelope_id, None)
        if future is None:
            logger.debug("Discarding stale or duplicate response", envelope_id=envelope_id)
            return
        if future.done():
            return

        if isinstance(response, ErrorResponse):
            future.set_exception(_to_exception(response))
        else:
            future.set_result(response)

    def terminate(self, reason: BaseException | None = None) -> None:
        """Mark the channel closed and fail every pending request.

        Safe to call from any thread. Used as the worker's exit callback.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            self._fail_pending(reason)
            return
        try:
            loop.call_soon_threadsafe(self._fail_pending, reason)
        except RuntimeError:
            self._fail_pending(reason)

    def _fail_pending(self, reason: BaseException | None) -> None:
        self._closed = True
        self._close_reason = reason
        pending, self._pending = self._pending, {}
        if pending:
            logger.warning("Channel closed with requests pending", pending=len(pending), reason=str(reason) if reason else None)
        for future in pending.values():
            if future.done():
                continue
            error = ChannelClosedError("Worker context was lost before responding")
            error.__cause__ = reason
            future.set_exception(error)


def _to_exception(response: ErrorResponse) -> Exception:
    payload = response.error
    error_class = error_class_for(payload.kind)
    if error_class is MigrationError:
        return MigrationError(payload.message, migration_id=payload.migration_id, trace=payload.trace)
    return error_class(payload.message, trace=payload.trace)
