"""Best-effort visitor session analytics.

Each tracker call is exactly one atomic upsert on the store. Analytics must
never break a chat turn, so every failure is logged and swallowed here.
"""

from __future__ import annotations

import structlog

from widgetchat.schemas.session import SessionPatch, VisitorInfo
from widgetchat.services.analytics.store import AnalyticsStore

logger = structlog.get_logger(__name__)


class SessionAnalyticsTracker:
    """Records turns and visitor contact details against a session row."""

    def __init__(self, store: AnalyticsStore, message_max_chars: int = 1000) -> None:
        self._store = store
        self._message_max_chars = message_max_chars

    async def record_turn(
        self,
        tenant_id: str,
        visitor_id: str,
        message: str,
        ip_address: str | None = None,
    ) -> None:
        """Create the session with message_count=1 or increment it by one."""
        patch = SessionPatch(
            message=message[: self._message_max_chars],
            message_increment=1,
            ip_address=ip_address,
        )
        try:
            await self._store.upsert_session(tenant_id, visitor_id, patch)
        except Exception as e:
            logger.error(
                "analytics_record_turn_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        logger.debug("analytics_turn_recorded", tenant_id=tenant_id, visitor_id=visitor_id)

    async def record_visitor_info(
        self, tenant_id: str, visitor_id: str, info: VisitorInfo
    ) -> None:
        """Attach contact details without touching message_count."""
        if info.is_empty:
            logger.debug("analytics_visitor_info_empty", tenant_id=tenant_id)
            return
        patch = SessionPatch(visitor_name=info.name, visitor_email=info.email)
        try:
            await self._store.upsert_session(tenant_id, visitor_id, patch)
        except Exception as e:
            logger.error(
                "analytics_record_visitor_info_failed",
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        logger.info(
            "analytics_visitor_info_recorded",
            tenant_id=tenant_id,
            visitor_id=visitor_id,
            has_name=info.name is not None,
            has_email=info.email is not None,
        )
