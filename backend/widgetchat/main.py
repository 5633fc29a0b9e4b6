"""Composition root.

Builds the engine, Redis client, model provider and ChatOrchestrator from
Settings. The request glue enters chat_runtime() once at startup and hands
the yielded orchestrator to its handlers:

    async with chat_runtime() as chat:
        reply = await chat.send_message(tenant_id, visitor_id, text)

On exit, pending analytics writes are drained before connections close.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

import structlog

from widgetchat.core.background import BackgroundTasks
from widgetchat.core.config import Settings
from widgetchat.db.postgres import build_engine, close_engine
from widgetchat.db.redis import build_redis
from widgetchat.services.analytics.ip_lookup import IpLookup, VisitorAddressResolver
from widgetchat.services.analytics.store import SqlAlchemySessionStore
from widgetchat.services.analytics.tracker import SessionAnalyticsTracker
from widgetchat.services.chat.history import ReplyHistory
from widgetchat.services.chat.orchestrator import ChatOrchestrator
from widgetchat.services.chat.policy import get_policy
from widgetchat.services.llm.base import LLMProvider
from widgetchat.services.llm.fallback import FallbackLLMProvider
from widgetchat.services.llm.gemini import GeminiProvider
from widgetchat.services.llm.openai_provider import OpenAIProvider
from widgetchat.services.settings import SettingsRepository

logger = structlog.get_logger(__name__)

# Upper bound on waiting for background writes at shutdown.
_SHUTDOWN_DRAIN_SECONDS = 5.0


def _configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_llm_provider(settings: Settings) -> LLMProvider:
    """Pick the model provider named by settings.llm_provider."""
    if settings.llm_provider == "gemini":
        return GeminiProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.model_timeout_seconds,
        )
    openai = OpenAIProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.model_timeout_seconds,
    )
    if settings.llm_provider == "fallback":
        return FallbackLLMProvider(
            primary=openai,
            secondary=GeminiProvider(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
                timeout_seconds=settings.model_timeout_seconds,
            ),
        )
    return openai


@asynccontextmanager
async def chat_runtime(settings: Settings | None = None) -> AsyncIterator[ChatOrchestrator]:
    """Startup and shutdown lifecycle for one ChatOrchestrator."""
    settings = settings or Settings()
    _configure_logging(settings.log_level)

    # --- Startup ---
    logger.info("app_startup", env=settings.app_env)
    # Unknown policy versions fail here, not on the first message.
    policy = get_policy(settings.response_policy_version)

    engine = build_engine(settings.postgres_url)
    redis = build_redis(settings.redis_url)
    tasks = BackgroundTasks()
    ip_resolver = None
    if settings.ip_lookup_enabled:
        ip_resolver = VisitorAddressResolver(
            IpLookup(settings.ip_lookup_url),
            redis,
            ttl_seconds=settings.reply_history_ttl_seconds,
        )

    orchestrator = ChatOrchestrator(
        settings_provider=SettingsRepository(
            engine, redis, cache_ttl_seconds=settings.settings_cache_ttl_seconds
        ),
        llm=build_llm_provider(settings),
        tracker=SessionAnalyticsTracker(
            SqlAlchemySessionStore(engine),
            message_max_chars=settings.analytics_message_max_chars,
        ),
        history=ReplyHistory(redis, ttl_seconds=settings.reply_history_ttl_seconds),
        policy=policy,
        ip_resolver=ip_resolver,
        tasks=tasks,
        model_timeout_seconds=settings.model_timeout_seconds,
        max_tokens=settings.model_max_tokens,
        temperature=settings.model_temperature,
    )
    logger.info(
        "app_providers_ready",
        llm_provider=settings.llm_provider,
        policy_version=policy.version,
    )

    try:
        yield orchestrator
    finally:
        # --- Shutdown ---
        logger.info("app_shutdown", pending_tasks=tasks.pending)
        await tasks.drain(timeout=_SHUTDOWN_DRAIN_SECONDS)
        await redis.close()
        await close_engine(engine)
