"""
Tests for the Redis pub/sub progress channel, with a mocked Redis client.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from shared.errors import RetryableError
from shared.models.events import CompleteEvent, ProgressEvent
from modules.progress_channel import RedisProgressChannel, event_channel


@pytest.fixture
def redis_client():
    client = Mock()
    client.publish = AsyncMock(return_value=1)
    client.channel_name = Mock(side_effect=lambda name: f"reelsmith:{name}")
    client.close = AsyncMock()
    return client


def make_pubsub(messages):
    pubsub = Mock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.get_message = AsyncMock(side_effect=messages)
    return pubsub


def test_event_channel_name():
    assert event_channel("abc") == "job_events:abc"


@pytest.mark.asyncio
async def test_publish_serializes_event(redis_client):
    channel = RedisProgressChannel(redis_client=redis_client)
    event = ProgressEvent(job_id="j1", progress=30, step="Animating scenes")

    await channel.publish("j1", event)

    name, payload = redis_client.publish.await_args.args
    assert name == "job_events:j1"
    assert '"progress":30' in payload


@pytest.mark.asyncio
async def test_publish_swallows_delivery_failure(redis_client):
    redis_client.publish.side_effect = RetryableError("Redis publish failed")
    channel = RedisProgressChannel(redis_client=redis_client)

    await channel.publish("j1", ProgressEvent(job_id="j1", progress=30, step="x"))


@pytest.mark.asyncio
async def test_subscribe_decodes_messages_until_terminal(redis_client):
    progress = ProgressEvent(job_id="j1", progress=50, step="Compositing video")
    complete = CompleteEvent(job_id="j1", artifact_ref="https://x/final.mp4")
    pubsub = make_pubsub([
        None,
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": b"not json"},
        {"type": "message", "data": progress.model_dump_json().encode()},
        {"type": "message", "data": complete.model_dump_json().encode()},
    ])
    redis_client.pubsub = Mock(return_value=pubsub)
    channel = RedisProgressChannel(redis_client=redis_client)

    async with channel.subscribe("j1") as subscription:
        events = [event async for event in subscription]

    assert [event.type for event in events] == ["progress", "complete"]
    pubsub.subscribe.assert_awaited_once_with("reelsmith:job_events:j1")
    pubsub.unsubscribe.assert_awaited_once_with("reelsmith:job_events:j1")
    pubsub.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_closes_redis(redis_client):
    await RedisProgressChannel(redis_client=redis_client).close()

    redis_client.close.assert_awaited_once()
