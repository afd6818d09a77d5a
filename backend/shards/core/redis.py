"""Redis connection and caching utilities.

Redis client is created lazily to avoid import-time side effects.
The same client backs the read-through cache and the task queue.
"""

import json
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

import redis.asyncio as redis


logger = logging.getLogger(__name__)

# Redis client - initialized lazily
_redis_client: Optional[redis.Redis] = None

TTL = Union[int, timedelta]


async def get_redis() -> redis.Redis:
    """Get Redis client instance.

    Client is created on first access, not at import time.
    """
    global _redis_client
    if _redis_client is None:
        from shards.core.config import get_settings
        settings = get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class Cache:
    """Cache utility class for Redis operations.

    Values are stored as JSON. Writers race benignly: concurrent sets of the
    same key hold values derived from the same upstream, last write wins.
    """

    def __init__(
        self,
        prefix: str = "shards",
        client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
    ):
        self.prefix = prefix
        self._client_factory = client_factory

    def _key(self, key: str) -> str:
        """Generate prefixed cache key."""
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        client = await self._client_factory()
        value = await client.get(self._key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[TTL] = None
    ) -> None:
        """Set value in cache with optional TTL (seconds or timedelta)."""
        client = await self._client_factory()
        serialized = json.dumps(value, default=str)
        if ttl:
            await client.setex(self._key(key), ttl, serialized)
        else:
            await client.set(self._key(key), serialized)

    async def delete(self, key: str) -> None:
        """Delete key from cache."""
        client = await self._client_factory()
        await client.delete(self._key(key))

    async def get_or_set(
        self,
        key: str,
        factory,
        ttl: Optional[TTL] = None
    ) -> Any:
        """Get from cache or compute and cache value.

        Args:
            key: Cache key
            factory: Async callable that produces the value if not cached
            ttl: Optional TTL for cached value

        Returns:
            Cached or freshly computed value
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await factory()
        await self.set(key, value, ttl)
        return value
