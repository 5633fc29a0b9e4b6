"""Optional visitor address verification.

The request glue hands send_message() the client address it saw. With the
lookup enabled, that address is checked against an ipapi-style endpoint
(``{"ip": "..."}`` for public addresses, ``{"error": true, ...}`` otherwise)
and only the verified address is stored, on the conversation's next turn.

Everything here is best-effort: a failure, timeout or rejected address
yields no address, never an error.
"""

from __future__ import annotations

import ipaddress

import httpx
import structlog

from widgetchat.core.exceptions import CacheConnectionError
from widgetchat.db.redis import RedisClient

logger = structlog.get_logger(__name__)

_TIMEOUT_SECONDS = 3.0


class IpLookup:
    """Asks the lookup service about one visitor address.

    ``url`` is a template with an ``{ip}`` placeholder.
    """

    def __init__(self, url: str, timeout_seconds: float = _TIMEOUT_SECONDS) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds

    async def lookup(self, ip_address: str) -> str | None:
        try:
            address = ipaddress.ip_address(ip_address.strip())
        except ValueError:
            logger.warning("ip_lookup_invalid_address", ip_address=ip_address[:64])
            return None
        if not address.is_global:
            # Private, loopback and reserved ranges say nothing about the visitor.
            logger.debug("ip_lookup_skipped_non_global", ip_address=str(address))
            return None

        url = self._url.format(ip=address)
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(url)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ip_lookup_failed", url=url, error=str(e))
            return None

        if not isinstance(body, dict) or body.get("error"):
            logger.warning("ip_lookup_rejected", url=url)
            return None
        ip = body.get("ip")
        if not isinstance(ip, str) or not ip:
            logger.warning("ip_lookup_empty", url=url)
            return None
        return ip


class VisitorAddressResolver:
    """Verified visitor addresses waiting for the next recorded turn.

    A conversation gets one lookup while its claim key lives. Results wait
    in Redis under the same TTL as the reply history, so conversations that
    go quiet leave nothing behind.
    """

    def __init__(
        self, lookup: IpLookup, redis: RedisClient, ttl_seconds: int = 30 * 60
    ) -> None:
        self._lookup = lookup
        self._redis = redis
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def claim_key(tenant_id: str, visitor_id: str) -> str:
        return f"visitor_ip:claimed:{tenant_id}:{visitor_id}"

    @staticmethod
    def pending_key(tenant_id: str, visitor_id: str) -> str:
        return f"visitor_ip:pending:{tenant_id}:{visitor_id}"

    async def take(self, tenant_id: str, visitor_id: str) -> str | None:
        """Remove and return the verified address, if one is waiting."""
        try:
            return await self._redis.pop(self.pending_key(tenant_id, visitor_id))
        except CacheConnectionError as e:
            logger.warning(
                "visitor_address_take_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
            )
            return None

    async def resolve(self, tenant_id: str, visitor_id: str, ip_address: str) -> None:
        """Verify ip_address unless this conversation already had a lookup."""
        try:
            claimed = await self._redis.set_if_absent(
                self.claim_key(tenant_id, visitor_id), "1", self._ttl_seconds
            )
            if not claimed:
                return
            verified = await self._lookup.lookup(ip_address)
            if verified is None:
                return
            await self._redis.set_with_ttl(
                self.pending_key(tenant_id, visitor_id), verified, self._ttl_seconds
            )
        except CacheConnectionError as e:
            logger.warning(
                "visitor_address_resolve_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
            )
            return
        logger.debug("visitor_address_verified", tenant_id=tenant_id, visitor_id=visitor_id)
