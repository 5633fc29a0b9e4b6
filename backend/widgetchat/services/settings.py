"""Tenant settings lookup.

Widget settings are owned by the dashboard and stored as JSON in the
widget_settings table. Reads go through a short-lived Redis cache; when
Redis is unavailable the database is queried directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from widgetchat.core.exceptions import (
    CacheConnectionError,
    PersistenceError,
    TenantNotFoundError,
)
from widgetchat.db.postgres import build_session_factory
from widgetchat.db.redis import RedisClient
from widgetchat.models.widget_settings import WidgetSettings
from widgetchat.schemas.tenant import TenantProfile

logger = structlog.get_logger(__name__)


class SettingsProvider(ABC):
    """Read-only access to tenant profiles."""

    @abstractmethod
    async def get_settings(self, tenant_id: str) -> TenantProfile:
        """Return the tenant's profile.

        Raises:
            TenantNotFoundError: If the tenant has no saved settings.
        """
        ...


class SettingsRepository(SettingsProvider):
    """SettingsProvider backed by widget_settings with a Redis read cache."""

    def __init__(
        self,
        engine: AsyncEngine,
        redis: RedisClient | None = None,
        cache_ttl_seconds: int = 60,
    ) -> None:
        self._session_factory = build_session_factory(engine)
        self._redis = redis
        self._cache_ttl_seconds = cache_ttl_seconds

    def _key(self, tenant_id: str) -> str:
        return f"tenant_settings:{tenant_id}"

    async def _read_cache(self, tenant_id: str) -> TenantProfile | None:
        if self._redis is None:
            return None
        try:
            cached = await self._redis.get_json(self._key(tenant_id))
        except CacheConnectionError as e:
            logger.warning("settings_cache_read_failed", tenant_id=tenant_id, error=str(e))
            return None
        if cached is None:
            return None
        try:
            return TenantProfile.model_validate(cached)
        except ValidationError:
            logger.warning("settings_cache_invalid", tenant_id=tenant_id)
            return None

    async def _write_cache(self, profile: TenantProfile) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set_json(
                self._key(profile.tenant_id),
                profile.model_dump(by_alias=True),
                self._cache_ttl_seconds,
            )
        except CacheConnectionError as e:
            logger.warning(
                "settings_cache_write_failed", tenant_id=profile.tenant_id, error=str(e)
            )

    async def get_settings(self, tenant_id: str) -> TenantProfile:
        cached = await self._read_cache(tenant_id)
        if cached is not None:
            logger.debug("settings_cache_hit", tenant_id=tenant_id)
            return cached

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(WidgetSettings).where(WidgetSettings.tenant_id == tenant_id)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("settings_read_failed", tenant_id=tenant_id, error=str(e))
            raise PersistenceError(f"Settings read failed: {e}") from e

        if row is None:
            raise TenantNotFoundError(f"No widget settings for tenant {tenant_id}")

        profile = TenantProfile.from_widget_settings(tenant_id, row.settings or {})
        await self._write_cache(profile)
        return profile

    async def invalidate(self, tenant_id: str) -> None:
        """Drop the cached profile after the dashboard saves new settings."""
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._key(tenant_id))
        except CacheConnectionError as e:
            logger.warning("settings_cache_delete_failed", tenant_id=tenant_id, error=str(e))
