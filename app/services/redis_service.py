from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from loguru import logger

from app.core.config import settings

T = TypeVar("T")

# Failures that mean "Redis is unavailable right now" rather than a programming error.
REDIS_ERRORS = (redis.RedisError, OSError, RuntimeError)


class RedisService:
    """
    Thin async Redis wrapper for cache storage.

    Every operation degrades instead of raising: reads return None and writes return False when
    Redis is down or not configured, so callers can treat Redis as best-effort storage.
    """

    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.REDIS_URL
        self._client: redis.Redis | None = None

    async def get_client(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        if not self.url:
            raise RuntimeError("REDIS_URL is not configured")

        logger.info("Connecting recommendation cache to Redis")
        self._client = redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            health_check_interval=30,
        )
        return self._client

    async def _run(self, op: str, key: str, call: Callable[[redis.Redis], Awaitable[T]], fallback: T) -> T:
        try:
            return await call(await self.get_client())
        except REDIS_ERRORS as exc:
            logger.error(f"Redis {op} failed for '{key}': {exc}")
            return fallback

    async def get(self, key: str) -> str | None:
        return await self._run("GET", key, lambda client: client.get(key), None)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store `value` as a string. With a ttl (seconds) the key expires on its own."""

        async def write(client: redis.Redis) -> bool:
            if ttl is None:
                return bool(await client.set(key, str(value)))
            return bool(await client.setex(key, ttl, str(value)))

        return await self._run("SET", key, write, False)

    async def delete(self, key: str) -> bool:
        """Returns whether a key was removed. A missing key is not an error."""

        async def remove(client: redis.Redis) -> bool:
            return bool(await client.delete(key))

        return await self._run("DEL", key, remove, False)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
            logger.info("Redis connection closed")
        except Exception as exc:
            logger.warning(f"Failed to close Redis connection: {exc}")


redis_service = RedisService()
