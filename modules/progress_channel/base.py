"""
Progress channel interface.

Per-job publish/subscribe of progress events. Delivery is at-most-once with
no replay: a subscriber that attaches late misses earlier events and must
poll the job store for the last known state.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Optional, Union

from shared.models.events import CompleteEvent, ErrorEvent, ProgressEvent

Event = Union[ProgressEvent, CompleteEvent, ErrorEvent]


def is_terminal_event(event: Event) -> bool:
    return event.type in ("complete", "error")


class Subscription(ABC):
    """
    Async iterator over one job's events.

    Iteration ends after a complete or error event, since nothing follows it.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._finished = False

    @abstractmethod
    async def _next_event(self) -> Optional[Event]:
        """Wait for the next event. None means the channel closed."""

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        if self._finished:
            raise StopAsyncIteration
        event = await self._next_event()
        if event is None:
            self._finished = True
            raise StopAsyncIteration
        if is_terminal_event(event):
            self._finished = True
        return event


class ProgressChannel(ABC):
    """Fan-out of job events to any number of subscribers."""

    @abstractmethod
    async def publish(self, job_id: str, event: Event) -> None:
        """Fire-and-forget. Never raises for delivery problems."""

    @abstractmethod
    def subscribe(self, job_id: str) -> AsyncContextManager[Subscription]:
        """Attach to a job's events for the lifetime of the context."""

    async def close(self) -> None:
        """Release channel resources."""
