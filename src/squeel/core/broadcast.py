# src/squeel/core/broadcast.py
"""Named broadcast channels connecting peer clients of one database.

Models the browser BroadcastChannel contract inside a process:

* A message posted on channel ``name`` reaches every OTHER open channel
  with the same name - never the sender itself.
* Delivery is asynchronous: each receiver gets the message on its own
  event loop via ``call_soon_threadsafe``, so peers may live on different
  threads or loops.
* Messages are strings (JSON); receivers decode and validate them.

Thread Safety:
    The hub's membership table is guarded by a lock. Delivery happens
    outside the lock so a receiver closing its channel cannot deadlock a
    concurrent post.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable

import structlog
from pydantic import ValidationError

from squeel.contracts.protocol import PeerMessage
from squeel.contracts.types import TableDependencies

logger = structlog.get_logger(__name__)


class BroadcastHub:
    """Registry of open channels, keyed by channel name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, list[BroadcastChannel]] = {}

    def open(
        self,
        name: str,
        on_message: Callable[[str], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> BroadcastChannel:
        """Join channel ``name``.

        Args:
            name: Channel name shared by all peers
            on_message: Called on ``loop`` with each message from a peer
            loop: Loop to deliver on (default: the running loop)

        Raises:
            RuntimeError: If no loop is given and none is running
        """
        channel = BroadcastChannel(self, name, on_message, loop or asyncio.get_running_loop())
        with self._lock:
            self._channels.setdefault(name, []).append(channel)
        return channel

    def member_count(self, name: str) -> int:
        with self._lock:
            return len(self._channels.get(name, []))

    def _post(self, sender: BroadcastChannel, message: str) -> None:
        with self._lock:
            receivers = [c for c in self._channels.get(sender.name, []) if c is not sender]
        for receiver in receivers:
            receiver._deliver(message)

    def _leave(self, channel: BroadcastChannel) -> None:
        with self._lock:
            members = self._channels.get(channel.name)
            if members is None:
                return
            if channel in members:
                members.remove(channel)
            if not members:
                del self._channels[channel.name]


class BroadcastChannel:
    """One peer's membership in a named channel. Created by BroadcastHub.open()."""

    def __init__(
        self,
        hub: BroadcastHub,
        name: str,
        on_message: Callable[[str], None],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.name = name
        self._hub = hub
        self._on_message = on_message
        self._loop = loop
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: str) -> None:
        if self._closed:
            raise RuntimeError(f"Broadcast channel {self.name!r} is closed")
        self._hub._post(self, message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._leave(self)

    def _deliver(self, message: str) -> None:
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._dispatch, message)
        except RuntimeError:
            # Receiver's loop is closed; the peer is gone.
            logger.debug("Dropping broadcast for closed loop", channel=self.name)
            self.close()

    def _dispatch(self, message: str) -> None:
        if not self._closed:
            self._on_message(message)


# Process-wide default, shared by every client that doesn't bring its own
default_hub = BroadcastHub()


class Broadcaster:
    """Sends and receives changed-table sets on a named channel.

    Outgoing sets are serialized as PeerMessage JSON. Incoming messages
    that fail validation are discarded; valid ones are handed to
    ``on_peer_change`` (the client republishes them locally without
    re-broadcasting).
    """

    def __init__(
        self,
        channel_name: str,
        on_peer_change: Callable[[TableDependencies], None],
        *,
        hub: BroadcastHub | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._on_peer_change = on_peer_change
        self._channel = (hub or default_hub).open(channel_name, self._on_message, loop=loop)

    @property
    def channel_name(self) -> str:
        return self._channel.name

    def broadcast(self, changed: TableDependencies) -> None:
        if self._channel.closed:
            return
        message = PeerMessage(changed_tables=changed.to_wire(), timestamp=time.time())
        self._channel.post(message.model_dump_json())

    def close(self) -> None:
        self._channel.close()

    def _on_message(self, raw: str) -> None:
        try:
            message = PeerMessage.model_validate_json(raw)
        except ValidationError as exc:
            logger.debug("Discarding malformed peer message", channel=self._channel.name, error=str(exc))
            return
        self._on_peer_change(TableDependencies.from_wire(message.changed_tables))
