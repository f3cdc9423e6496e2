"""
Redis pub/sub progress channel.

Events are published as JSON on `job_events:{job_id}`, so subscribers in
other processes (API replicas) receive them. Redis pub/sub is itself
at-most-once with no replay.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.errors import RetryableError
from shared.logging import get_logger
from shared.models.events import parse_event
from shared.redis_client import RedisClient

from .base import Event, ProgressChannel, Subscription

logger = get_logger("progress_channel.redis")


def event_channel(job_id: str) -> str:
    return f"job_events:{job_id}"


class RedisSubscription(Subscription):
    def __init__(self, job_id: str, pubsub, poll_timeout: float = 1.0):
        super().__init__(job_id)
        self.pubsub = pubsub
        self.poll_timeout = poll_timeout

    async def _next_event(self) -> Optional[Event]:
        while True:
            message = await self.pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=self.poll_timeout
            )
            if message is None:
                continue
            if message.get("type") != "message":
                continue
            try:
                return parse_event(message["data"])
            except PydanticValidationError as e:
                logger.warning(
                    "Ignoring malformed event",
                    extra={"job_id": self.job_id, "error": str(e)}
                )


class RedisProgressChannel(ProgressChannel):
    """Progress channel over Redis pub/sub."""

    def __init__(self, redis_client: Optional[RedisClient] = None):
        self.redis = redis_client or RedisClient()

    async def publish(self, job_id: str, event: Event) -> None:
        try:
            await self.redis.publish(event_channel(job_id), event.model_dump_json())
        except RetryableError as e:
            # At-most-once: a lost event is recovered by polling the job store
            logger.warning(
                "Failed to publish event",
                extra={"job_id": job_id, "event_type": event.type, "error": str(e)}
            )

    @asynccontextmanager
    async def subscribe(self, job_id: str) -> AsyncIterator[Subscription]:
        pubsub = self.redis.pubsub()
        channel = self.redis.channel_name(event_channel(job_id))
        await pubsub.subscribe(channel)
        try:
            yield RedisSubscription(job_id, pubsub)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def close(self) -> None:
        await self.redis.close()
