"""
In-process progress channel.

Each subscriber gets a bounded queue; a subscriber that falls behind has
events dropped rather than slowing the publisher.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set

from shared.config import settings
from shared.logging import get_logger

from .base import Event, ProgressChannel, Subscription

logger = get_logger("progress_channel.memory")

_CLOSED = object()


class QueueSubscription(Subscription):
    def __init__(self, job_id: str, queue: asyncio.Queue):
        super().__init__(job_id)
        self.queue = queue

    async def _next_event(self) -> Optional[Event]:
        item = await self.queue.get()
        return None if item is _CLOSED else item


class InProcessProgressChannel(ProgressChannel):
    """Progress channel for a single process (local runs, tests)."""

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.progress_queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self.dropped = 0

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    async def publish(self, job_id: str, event: Event) -> None:
        for queue in list(self._subscribers.get(job_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(
                    "Subscriber queue full, dropping event",
                    extra={"job_id": job_id, "event_type": event.type}
                )

    @asynccontextmanager
    async def subscribe(self, job_id: str) -> AsyncIterator[Subscription]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[job_id].add(queue)
        try:
            yield QueueSubscription(job_id, queue)
        finally:
            subscribers = self._subscribers.get(job_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[job_id]

    async def close(self) -> None:
        """End every open subscription."""
        for subscribers in self._subscribers.values():
            for queue in subscribers:
                try:
                    queue.put_nowait(_CLOSED)
                except asyncio.QueueFull:
                    queue.get_nowait()
                    queue.put_nowait(_CLOSED)
