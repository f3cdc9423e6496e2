"""
Progress Broadcast Channel module.

Per-job publish/subscribe fan-out of progress, completion and error events.
"""

from shared.config import settings

from modules.progress_channel.base import ProgressChannel, Subscription, is_terminal_event
from modules.progress_channel.memory import InProcessProgressChannel
from modules.progress_channel.redis_channel import RedisProgressChannel, event_channel


def create_progress_channel(backend: str = None) -> ProgressChannel:
    """Build the channel selected by PROGRESS_CHANNEL_BACKEND."""
    backend = backend or settings.progress_channel_backend
    if backend == "memory":
        return InProcessProgressChannel()
    return RedisProgressChannel()


__all__ = [
    "ProgressChannel",
    "Subscription",
    "InProcessProgressChannel",
    "RedisProgressChannel",
    "create_progress_channel",
    "event_channel",
    "is_terminal_event",
]
