"""Invalidation bus: fan-out of "these tables changed" notifications.

Provides a simple synchronous bus that the client publishes to after every
committed write. Live queries subscribe and decide for themselves whether
a change is relevant to them.

Peer clients attached to the same logical database receive the same
notifications through an optional Broadcaster. A notification that came
from a peer is republished locally with ``broadcast=False`` so it is never
sent back out.
"""

from collections.abc import Callable
from itertools import count
from typing import Protocol

import structlog

from squeel.contracts.types import TableDependencies

logger = structlog.get_logger(__name__)

InvalidationHandler = Callable[[TableDependencies], None]


class PeerPublisher(Protocol):
    """What the bus needs from a broadcaster."""

    def broadcast(self, changed: TableDependencies) -> None: ...

    def close(self) -> None: ...


class InvalidationBus:
    """Synchronous fan-out of changed-table sets.

    Handlers are called synchronously over a snapshot of the registry, so
    a handler may unsubscribe itself (or others) while being called.
    Handlers must not depend on the order in which they are called.
    A handler exception propagates to the publisher once every other
    handler has run.

    Example:
        bus = InvalidationBus()
        unsubscribe = bus.subscribe(lambda changed: print(changed.to_wire()))
        bus.publish(TableDependencies.of(["orders"]))
        unsubscribe()
    """

    def __init__(self, broadcaster: PeerPublisher | None = None) -> None:
        self._handlers: dict[int, InvalidationHandler] = {}
        self._tokens = count()
        self._broadcaster = broadcaster

    def attach_broadcaster(self, broadcaster: PeerPublisher) -> None:
        if self._broadcaster is not None:
            raise RuntimeError("InvalidationBus already has a broadcaster attached")
        self._broadcaster = broadcaster

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: InvalidationHandler) -> Callable[[], None]:
        """Register a handler and return an idempotent unsubscribe callable."""
        token = next(self._tokens)
        self._handlers[token] = handler

        def unsubscribe() -> None:
            self._handlers.pop(token, None)

        return unsubscribe

    def publish(self, changed: TableDependencies, *, broadcast: bool = True) -> None:
        """Notify peers (optionally), then every local handler.

        Peers are told first and every handler runs even if an earlier one
        raised: by the time anything is published the write has committed.
        The first handler exception is re-raised afterwards.

        Args:
            changed: Tables that changed, or the wildcard
            broadcast: Also send to peer clients. False for notifications
                that arrived from a peer.
        """
        if not changed:
            return
        logger.debug("Publishing invalidation", tables=changed.to_wire(), handlers=len(self._handlers), broadcast=broadcast)
        if broadcast and self._broadcaster is not None:
            self._broadcaster.broadcast(changed)

        first_error: Exception | None = None
        for handler in list(self._handlers.values()):
            try:
                handler(changed)
            except Exception as exc:
                logger.error("Invalidation handler failed", tables=changed.to_wire(), error=str(exc), exc_info=True)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def close(self) -> None:
        self._handlers.clear()
        if self._broadcaster is not None:
            self._broadcaster.close()
            self._broadcaster = None
