"""Notification hub fanning engine events out to the display layer.

Two kinds of consumers: async listeners registered in-process, and
per-client queues backing the ``/events`` SSE stream. Delivery is best
effort; a slow client or a failing listener never holds up the engine.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from hooktrail.adapters.events import HookTrailEvent

logger = logging.getLogger(__name__)

Listener = Callable[[HookTrailEvent], Awaitable[None]]


class NotificationHub:
    """Fan-out of HookTrailEvents to listeners and bounded SSE queues."""

    def __init__(self, maxsize: int = 500) -> None:
        self._maxsize = maxsize
        self._listeners: list[Listener] = []
        self._queues: set[asyncio.Queue[HookTrailEvent | None]] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def publish(self, event: HookTrailEvent) -> None:
        """Deliver *event* to every listener and subscriber queue."""
        if self._closed:
            return
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Notification listener failed on %s", event.event_type)

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "SSE subscriber queue full, dropping %s (queue size: %d)",
                    event.event_type,
                    queue.qsize(),
                )

    def subscribe(self) -> asyncio.Queue[HookTrailEvent | None]:
        queue: asyncio.Queue[HookTrailEvent | None] = asyncio.Queue(maxsize=self._maxsize)
        self._queues.add(queue)
        logger.debug("SSE subscriber added (%d total)", len(self._queues))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[HookTrailEvent | None]) -> None:
        self._queues.discard(queue)
        logger.debug("SSE subscriber removed (%d total)", len(self._queues))

    async def consume(
        self,
        queue: asyncio.Queue[HookTrailEvent | None],
        keepalive: float = 30.0,
    ) -> AsyncIterator[HookTrailEvent | None]:
        """Yield events from *queue*; yields None when *keepalive* elapses idle.

        Stops when the hub is closed.
        """
        while not self._closed:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield None
                continue
            if event is None:
                break
            yield event

    def close(self) -> None:
        """Stop delivery and wake every subscriber so its stream can end."""
        self._closed = True
        for queue in list(self._queues):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._queues.clear()
