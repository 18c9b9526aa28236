"""Fan-out of session status changes to subscriber queues."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from .models import StatusEvent

logger = logging.getLogger(__name__)


class StatusBroadcaster:
    """Deliver status events to every subscriber without ever blocking."""

    def __init__(self, default_maxsize: int = 100) -> None:
        self._default_maxsize = default_maxsize
        self._queues: List[asyncio.Queue] = []

    def subscribe(self, maxsize: int | None = None) -> asyncio.Queue:
        """Register a new subscriber until it is unsubscribed."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize if maxsize is not None else self._default_maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Drop a subscriber whose consumer has gone away."""
        try:
            self._queues.remove(queue)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, event: StatusEvent) -> None:
        for queue in self._queues:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Subscriber queue full; dropped oldest event for %s", event.session_id)
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("Subscriber queue still full; dropping event for %s", event.session_id)
