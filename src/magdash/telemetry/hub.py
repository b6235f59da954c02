"""Publish/subscribe fan-out for WebSocket subscribers.

A :class:`BroadcastHub` delivers each published message to every open
:class:`Subscription`, each error-isolated.  Publishing never awaits: the
message is serialized once and dropped into every subscriber's bounded
outbound queue, and a per-subscriber writer task does the actual send.  One
slow or broken subscriber therefore cannot stall the publisher or the other
subscribers, and each subscriber sees messages in publish order.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from typing import TYPE_CHECKING, Any

from magdash.api.errors import SubscriberDeliveryError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
DEFAULT_SEND_TIMEOUT = 5.0

_ids = itertools.count(1)


class Subscription:
    """Handle for one connected subscriber.

    Created by :meth:`BroadcastHub.subscribe`; cancelled by
    :meth:`BroadcastHub.unsubscribe`.  Once :attr:`closed` is set no further
    send is attempted, even for messages already queued.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        *,
        name: str,
        maxsize: int,
    ) -> None:
        self.id = next(_ids)
        self.name = name
        self._send = send
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.sent_count = 0
        self.dropped_count = 0
        self.failed_count = 0

    def __repr__(self) -> str:
        return f"<Subscription {self.id} {self.name}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, data: str) -> bool:
        """Enqueue *data* without waiting.  Returns ``False`` if dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self.dropped_count += 1
            return False
        return True

    def _start(self, send_timeout: float) -> None:
        self._task = asyncio.create_task(self._writer(send_timeout), name=f"sub-{self.id}")

    def _close(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _writer(self, send_timeout: float) -> None:
        while not self._closed:
            data = await self._queue.get()
            if self._closed:
                return
            try:
                await asyncio.wait_for(self._send(data), send_timeout)
                self.sent_count += 1
            except Exception as exc:
                self.failed_count += 1
                reason = "timed out" if isinstance(exc, TimeoutError) else repr(exc)
                err = SubscriberDeliveryError(self.name, reason)
                logger.warning("%s", err)


class BroadcastHub:
    """Fan-out group: delivers each published message to all subscribers.

    Parameters:
        name: Label used in log messages (``"viewer"``, ``"device"``).
        on_connect: Optional hook run exactly once per new subscription; the
            message it returns is queued as that subscriber's first message,
            ahead of anything published afterwards.
        queue_size: Per-subscriber outbound queue capacity.
        send_timeout: Upper bound in seconds for one send.
    """

    def __init__(
        self,
        name: str,
        *,
        on_connect: Callable[[], dict[str, Any] | None] | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        self._name = name
        self._on_connect = on_connect
        self._queue_size = queue_size
        self._send_timeout = send_timeout
        self._subs: dict[int, Subscription] = {}
        self._published = 0
        self._dropped = 0

    # -- Properties -----------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def subscriber_count(self) -> int:
        """Number of currently open subscriptions."""
        return len(self._subs)

    @property
    def published_count(self) -> int:
        """Total messages published since creation."""
        return self._published

    @property
    def dropped_count(self) -> int:
        """Total per-subscriber deliveries dropped on a full queue."""
        return self._dropped

    def has_subscribers(self) -> bool:
        return bool(self._subs)

    # -- Lifecycle ------------------------------------------------------------

    def subscribe(
        self,
        send: Callable[[str], Awaitable[None]],
        *,
        name: str | None = None,
    ) -> Subscription:
        """Register a subscriber and start its writer task.

        Must be called from the running event loop.  The ``on_connect``
        message is queued before the subscription becomes visible to
        :meth:`publish`, and nothing awaits in between.
        """
        sub = Subscription(send, name=name or self._name, maxsize=self._queue_size)
        if self._on_connect is not None:
            try:
                greeting = self._on_connect()
            except Exception:
                logger.warning("%s hub on_connect hook failed", self._name, exc_info=True)
                greeting = None
            if greeting is not None:
                sub.offer(self._encode(greeting))
        self._subs[sub.id] = sub
        sub._start(self._send_timeout)
        logger.info(
            "%s subscriber connected: %s (total: %d)", self._name, sub.name, len(self._subs)
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Close *sub*.  Idempotent; safe while a publish is in flight."""
        sub._close()
        if self._subs.pop(sub.id, None) is not None:
            logger.info(
                "%s subscriber disconnected: %s (remaining: %d)",
                self._name,
                sub.name,
                len(self._subs),
            )

    async def close(self) -> None:
        """Close every subscription and wait for the writers to finish."""
        subs = list(self._subs.values())
        for sub in subs:
            self.unsubscribe(sub)
        for sub in subs:
            if sub._task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await sub._task

    # -- Publishing -----------------------------------------------------------

    def publish(self, message: dict[str, Any]) -> int:
        """Queue *message* for every open subscriber.  Returns how many got it.

        Never awaits and never raises for a subscriber-side problem; a full
        queue drops the message for that subscriber only.
        """
        data = self._encode(message)
        self._published += 1
        delivered = 0
        for sub in list(self._subs.values()):
            if sub.offer(data):
                delivered += 1
            elif not sub.closed:
                self._dropped += 1
                logger.warning(
                    "%s subscriber %s is backed up; dropped %s message",
                    self._name,
                    sub.name,
                    message.get("type", "?"),
                )
        return delivered

    @staticmethod
    def _encode(message: dict[str, Any]) -> str:
        return json.dumps(message, separators=(",", ":"), default=str)
