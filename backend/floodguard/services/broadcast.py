"""
Realtime event broadcaster.

In-process fan-out of cycle and alert events to WebSocket subscribers.
Publishing is best effort: a slow or failed subscriber never affects the
publisher.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class EventBroadcaster:
    """Fan-out of JSON-ready events to subscriber queues."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    async def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """Queue an event for every subscriber; returns how many received it."""
        message = {"event": event, "ts": datetime.utcnow().isoformat(), "payload": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event} for a slow subscriber")
        return delivered
