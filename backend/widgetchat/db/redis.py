"""Redis access for the tenant settings cache and per-conversation state
(last reply, verified visitor address).

Only the handful of commands those features need are exposed. Redis is
an optimisation here: callers catch CacheConnectionError and carry on
without the cache, so every RedisError is converted at this boundary.
"""

import json
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from widgetchat.core.exceptions import CacheConnectionError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def build_redis(url: str) -> "RedisClient":
    """Create a RedisClient over its own connection pool. No I/O until first use."""
    return RedisClient(redis_from_url(url, decode_responses=True, encoding="utf-8"))


class RedisClient:
    """String and JSON values with TTLs, raising CacheConnectionError on failure."""

    def __init__(self, client: Redis) -> None:
        self._r = client

    async def _run(self, command: str, key: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except RedisError as e:
            logger.error("redis_command_failed", command=command, key=key, error=str(e))
            raise CacheConnectionError(f"Redis {command} failed: {e}") from e

    async def get(self, key: str) -> str | None:
        return await self._run("GET", key, self._r.get(key))

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._run("SETEX", key, self._r.setex(key, ttl_seconds, value))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """SET NX with a TTL. True when this call created the key."""
        created = await self._run(
            "SET NX", key, self._r.set(key, value, ex=ttl_seconds, nx=True)
        )
        return bool(created)

    async def pop(self, key: str) -> str | None:
        """GETDEL: the value, removed in the same command."""
        return await self._run("GETDEL", key, self._r.getdel(key))

    async def delete(self, key: str) -> int:
        """Returns the number of keys removed (0 or 1)."""
        return await self._run("DEL", key, self._r.delete(key))

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set_with_ttl(key, json.dumps(value, separators=(",", ":")), ttl_seconds)

    async def get_json(self, key: str) -> Any | None:
        """Decoded value, or None when the key is missing or holds invalid JSON."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("redis_json_decode_failed", key=key)
            return None

    async def close(self) -> None:
        logger.info("redis_shutdown")
        await self._r.aclose()
