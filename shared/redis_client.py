"""
Redis client.

Async Redis wrapper with key prefixing, JSON helpers and pub/sub used by the
progress channel.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from shared.config import settings
from shared.errors import ConfigError, RetryableError
from shared.logging import get_logger

logger = get_logger("redis_client")


class RedisClient:
    """Redis client wrapper with key prefix and retryable errors."""

    def __init__(self, url: Optional[str] = None, prefix: str = "reelsmith:"):
        """Initialize Redis client."""
        try:
            self.client = redis.from_url(url or settings.redis_url, decode_responses=False)
            self.prefix = prefix
        except Exception as e:
            raise ConfigError(f"Failed to initialize Redis client: {str(e)}") from e

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def channel_name(self, channel: str) -> str:
        """Prefixed pub/sub channel name."""
        return self._key(channel)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """
        Set a key.

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            return bool(await self.client.set(self._key(key), value, ex=ex))
        except Exception as e:
            raise RetryableError(f"Redis set failed: {str(e)}") from e

    async def get(self, key: str) -> Optional[str]:
        """
        Get a key, decoded as UTF-8, or None if missing.

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            value = await self.client.get(self._key(key))
        except Exception as e:
            raise RetryableError(f"Redis get failed: {str(e)}") from e
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        try:
            return await self.client.delete(self._key(key)) > 0
        except Exception as e:
            raise RetryableError(f"Redis delete failed: {str(e)}") from e

    async def set_json(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value."""
        return await self.set(key, json.dumps(data), ex=ttl)

    async def get_json(self, key: str) -> Optional[Any]:
        """Load a JSON value. Raises json.JSONDecodeError on corrupt data."""
        value = await self.get(key)
        if value is None:
            return None
        return json.loads(value)

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message. Returns the number of receivers.

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            return await self.client.publish(self.channel_name(channel), message)
        except Exception as e:
            raise RetryableError(f"Redis publish failed: {str(e)}") from e

    def pubsub(self):
        """New pub/sub connection (caller subscribes and closes it)."""
        return self.client.pubsub()

    async def health_check(self) -> bool:
        """Ping Redis."""
        try:
            await self.client.ping()
            return True
        except Exception as e:
            logger.warning(f"Redis health check failed: {str(e)}")
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        await self.client.close()
