"""Last reply per conversation, kept in Redis for the dedupe stage.

Keyed by (tenant_id, visitor_id) with an idle TTL. Cache outages only cost
deduplication, so read and write failures are logged and swallowed.
"""

from __future__ import annotations

import structlog

from widgetchat.core.exceptions import CacheConnectionError
from widgetchat.db.redis import RedisClient

logger = structlog.get_logger(__name__)


class ReplyHistory:
    """Remembers the most recent reply sent in each conversation."""

    def __init__(self, redis: RedisClient, ttl_seconds: int = 30 * 60) -> None:
        self._redis = redis
        self._ttl_seconds = ttl_seconds

    def _key(self, tenant_id: str, visitor_id: str) -> str:
        return f"reply:last:{tenant_id}:{visitor_id}"

    async def last_reply(self, tenant_id: str, visitor_id: str) -> str | None:
        try:
            return await self._redis.get(self._key(tenant_id, visitor_id))
        except CacheConnectionError as e:
            logger.warning(
                "reply_history_read_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
            )
            return None

    async def remember(self, tenant_id: str, visitor_id: str, reply: str) -> None:
        try:
            await self._redis.set_with_ttl(
                self._key(tenant_id, visitor_id), reply, self._ttl_seconds
            )
        except CacheConnectionError as e:
            logger.warning(
                "reply_history_write_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
            )
