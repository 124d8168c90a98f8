"""Live connection registry and best-effort fan-out.

Each registered connection gets its own bounded queue and a pump task
that writes events to the socket in publish order. ``publish`` only
enqueues, so it never waits on any peer's network I/O. A peer whose
send fails or exceeds ``send_timeout`` is dropped; other peers are
unaffected. A dropped peer's socket is closed with ``DROPPED_CLOSE_CODE`` so
the client knows to reconnect.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

CONNECTED = "connected"
RECEIVE_MESSAGE = "receiveMessage"
SEND_MESSAGE = "sendMessage"

# Sent to a peer whose delivery was dropped; clients should reconnect.
DROPPED_CLOSE_CODE = 1011


class Connection(Protocol):
    """Anything that can push JSON to a client (e.g. a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


@dataclass(frozen=True)
class BroadcastEvent:
    """An event to deliver to live connections.

    ``user_id`` scopes delivery to that user's connections; ``None``
    means every connection receives it.
    """

    type: str
    payload: Any
    user_id: Optional[str] = None

    def to_wire(self) -> dict:
        return {"type": self.type, "payload": self.payload}


@dataclass(eq=False)
class Subscription:
    """A registered connection and its delivery state."""

    connection: Connection
    user_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    dropped: int = 0
    active: bool = True

    def accepts(self, event: BroadcastEvent) -> bool:
        return event.user_id is None or event.user_id == self.user_id


class ConnectionManager:
    """Registry of live connections with per-peer ordered delivery."""

    def __init__(self, send_timeout: float = 2.0, queue_size: int = 100):
        """Initialize the manager.

        Args:
            send_timeout: Seconds a single send may take before the peer
                is dropped.
            queue_size: Events buffered per peer; further events for a
                full peer are discarded.
        """
        self.send_timeout = send_timeout
        self.queue_size = queue_size
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.values())

    def is_registered(self, connection: Connection) -> bool:
        with self._lock:
            return id(connection) in self._subscriptions

    def register(
        self, connection: Connection, user_id: Optional[str] = None
    ) -> Subscription:
        """Admit a live connection. Must be called on the event loop.

        Registering an already-registered connection returns its
        existing subscription.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            existing = self._subscriptions.get(id(connection))
            if existing is not None:
                return existing
            self._loop = loop
            sub = Subscription(
                connection=connection,
                user_id=user_id,
                queue=asyncio.Queue(maxsize=self.queue_size),
            )
            self._subscriptions[id(connection)] = sub
        sub.task = loop.create_task(self._pump(sub))
        logger.info(
            "Connection %s registered (user=%s, total=%d)",
            sub.id,
            user_id,
            self.connection_count,
            extra={"connection_id": sub.id, "user_id": user_id},
        )
        return sub

    def unregister(self, connection: Connection) -> None:
        """Remove a connection. Safe to call repeatedly or for unknown handles."""
        with self._lock:
            sub = self._subscriptions.pop(id(connection), None)
        if sub is None:
            return
        self._deactivate(sub)
        logger.info("Connection %s unregistered (total=%d)", sub.id, self.connection_count)

    def publish(self, event: BroadcastEvent) -> int:
        """Queue ``event`` for every matching connection.

        Callable from the event loop or from worker threads.

        Returns:
            Number of connections the event was queued for.
        """
        targets = [sub for sub in self.subscriptions() if sub.accepts(event)]
        if not targets:
            return 0

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is not None and running is not loop:
            for sub in targets:
                loop.call_soon_threadsafe(self._enqueue, sub, event)
            return len(targets)

        return sum(1 for sub in targets if self._enqueue(sub, event))

    def send(self, subscription: Subscription, event: BroadcastEvent) -> bool:
        """Queue an event for one subscription only, behind anything already queued."""
        return self._enqueue(subscription, event)

    def _enqueue(self, sub: Subscription, event: BroadcastEvent) -> bool:
        if not sub.active:
            return False
        try:
            sub.queue.put_nowait(event)
        except asyncio.QueueFull:
            sub.dropped += 1
            logger.warning("Connection %s queue full; dropping %s event", sub.id, event.type)
            return False
        return True

    async def _pump(self, sub: Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                if not sub.active:
                    continue
                await asyncio.wait_for(
                    sub.connection.send_json(event.to_wire()), timeout=self.send_timeout
                )
                sub.delivered += 1
            except asyncio.TimeoutError:
                logger.warning(
                    "Connection %s send exceeded %.1fs; dropping peer",
                    sub.id,
                    self.send_timeout,
                    extra={"connection_id": sub.id, "user_id": sub.user_id},
                )
                self._drop(sub)
                await self._close_dropped(sub, "send timed out")
                return
            except Exception as e:
                logger.info(
                    "Connection %s send failed (%s); dropping peer",
                    sub.id,
                    e,
                    extra={"connection_id": sub.id, "user_id": sub.user_id},
                )
                self._drop(sub)
                await self._close_dropped(sub, "send failed")
                return
            finally:
                sub.queue.task_done()

    async def _close_dropped(self, sub: Subscription, reason: str) -> None:
        """Best-effort close so the client's read loop ends and it can reconnect."""
        try:
            await asyncio.wait_for(
                sub.connection.close(code=DROPPED_CLOSE_CODE, reason=reason),
                timeout=self.send_timeout,
            )
        except Exception as e:
            logger.debug("Closing dropped connection %s failed: %s", sub.id, e)

    def _drop(self, sub: Subscription) -> None:
        with self._lock:
            if self._subscriptions.get(id(sub.connection)) is sub:
                del self._subscriptions[id(sub.connection)]
        sub.active = False
        sub.dropped += 1
        self._discard_pending(sub)

    def _deactivate(self, sub: Subscription) -> None:
        sub.active = False
        self._discard_pending(sub)
        if sub.task is not None and not sub.task.done():
            sub.task.cancel()

    @staticmethod
    def _discard_pending(sub: Subscription) -> None:
        while True:
            try:
                sub.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            sub.queue.task_done()

    async def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been delivered or dropped.

        Returns:
            True if all queues drained within ``timeout``.
        """
        queues = [sub.queue for sub in self.subscriptions()]
        if not queues:
            return True
        try:
            await asyncio.wait_for(
                asyncio.gather(*(q.join() for q in queues)), timeout=timeout
            )
        except asyncio.TimeoutError:
            return False
        return True

    async def close(self) -> None:
        """Unregister every connection and stop their pump tasks."""
        with self._lock:
            subs = list(self._subscriptions.values())
            self._subscriptions.clear()
        tasks = []
        for sub in subs:
            self._deactivate(sub)
            if sub.task is not None:
                tasks.append(sub.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Closed %d live connections", len(subs))


BroadcastHub = ConnectionManager
