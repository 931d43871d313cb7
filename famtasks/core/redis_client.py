"""Optional Redis client for scheduler state shared between scheduling loops."""

import logging
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from famtasks.core.config import Constants, settings


logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis wrapper that degrades to a no-op when Redis is not configured.

    Every operation swallows ``RedisError`` and returns a neutral value so
    callers can fall back to in-process state.
    """

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        url = url if url is not None else settings.redis_url
        self._enabled = bool(url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0

        if self._enabled and url:
            try:
                self._pool = ConnectionPool.from_url(
                    url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", url)
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Using in-process scheduler state.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Using in-process scheduler state.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Get Redis health status."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
        }

    def _record(self, *, ok: bool) -> None:
        if ok:
            self._last_successful_operation = datetime.now(UTC)
        else:
            self._failure_count += 1

    async def get(self, key: str) -> str | None:
        """Get a value, or None if missing or Redis is unavailable."""
        if not self._client:
            return None
        try:
            value = await self._client.get(key)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis GET error for key %s: %s", key, e)
            return None
        self._record(ok=True)
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set a value with TTL."""
        if not self._client:
            return False
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis SET error for key %s: %s", key, e)
            return False
        self._record(ok=True)
        return True

    async def set_if_not_exists(self, key: str, value: str, ttl_seconds: int) -> bool | None:
        """Atomically set a value only if the key is absent.

        Returns:
            True if the key was set, False if it already existed, None if Redis
            is unavailable or the command failed
        """
        if not self._client:
            return None
        try:
            result = await self._client.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis SETNX error for key %s: %s", key, e)
            return None
        self._record(ok=True)
        return bool(result)

    async def delete(self, *keys: str) -> bool:
        """Delete one or more keys."""
        if not self._client or not keys:
            return False
        try:
            await self._client.delete(*keys)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis DELETE error: %s", e)
            return False
        self._record(ok=True)
        return True

    async def keys(self, pattern: str) -> list[str]:
        """Find keys matching a pattern."""
        if not self._client:
            return []
        try:
            found = [key async for key in self._client.scan_iter(match=pattern)]
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis SCAN error for pattern %s: %s", pattern, e)
            return []
        return [k.decode() if isinstance(k, bytes) else k for k in found]

    async def increment(self, key: str, ttl_seconds: int | None = None) -> int | None:
        """Increment a counter atomically, refreshing its TTL when given."""
        if not self._client:
            return None
        try:
            value = await self._client.incr(key)
            if ttl_seconds:
                await self._client.expire(key, ttl_seconds)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis INCR error for key %s: %s", key, e)
            return None
        self._record(ok=True)
        return value

    async def ping(self) -> bool:
        """Ping Redis to check connection."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())  # type: ignore[misc]
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()
