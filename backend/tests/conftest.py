"""Shared pytest fixtures for the widgetchat test suite.

Provides:
  - mock_llm: Mock LLMProvider returning configurable responses
  - mock_redis: Mock RedisClient with in-memory dict storage
  - analytics_store: In-memory AnalyticsStore with the same upsert semantics
  - settings_provider: Static SettingsProvider holding sample_profile
  - orchestrator: ChatOrchestrator wired to all of the above
  - sqlite_engine: Async engine on a temporary SQLite file with tables created

No model SDK or network call is made anywhere in the suite.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from widgetchat.core.exceptions import (
    CacheConnectionError,
    PersistenceError,
    TenantNotFoundError,
)
from widgetchat.db.postgres import build_engine, close_engine, create_tables
from widgetchat.schemas.session import SessionPatch, VisitorSessionSummary
from widgetchat.schemas.tenant import TenantProfile
from widgetchat.services.analytics.store import AnalyticsStore
from widgetchat.services.analytics.tracker import SessionAnalyticsTracker
from widgetchat.services.chat.history import ReplyHistory
from widgetchat.services.chat.orchestrator import ChatOrchestrator
from widgetchat.services.chat.policy import ResponsePolicy, get_policy
from widgetchat.services.llm.base import ConversationTurn, LLMProvider, LLMResponse
from widgetchat.services.settings import SettingsProvider


# ---------------------------------------------------------------------------
# Mock LLM Provider
# ---------------------------------------------------------------------------


class MockLLMProvider(LLMProvider):
    """Mock LLM provider for testing. Returns configurable responses.

    ``responses`` maps a visitor message to its reply text; anything else
    gets ``generate_text``. ``delays`` works the same way for latency.
    """

    def __init__(
        self,
        generate_text: str = "We are open from nine to five every weekday.",
        error: Exception | None = None,
        delay: float = 0.0,
        responses: dict[str, str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.generate_text = generate_text
        self.error = error
        self.delay = delay
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    async def complete(
        self,
        history: list[ConversationTurn],
        new_message: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> LLMResponse:
        self.calls.append(
            {
                "history": list(history),
                "new_message": new_message,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.get(new_message, self.delay)
            if delay:
                await asyncio.sleep(delay)
            if self.error is not None:
                raise self.error
            return LLMResponse(
                text=self.responses.get(new_message, self.generate_text),
                input_tokens=50,
                output_tokens=10,
            )
        finally:
            self.active -= 1


# ---------------------------------------------------------------------------
# Mock Redis Client
# ---------------------------------------------------------------------------


class MockRedisClient:
    """In-memory mock of RedisClient. ``fail=True`` simulates an outage."""

    def __init__(self, fail: bool = False) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise CacheConnectionError("Redis unavailable")

    async def get(self, key: str) -> str | None:
        self._check()
        return self._store.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check()
        self._store[key] = value
        self._ttls[key] = ttl_seconds

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check()
        if key in self._store:
            return False
        await self.set_with_ttl(key, value, ttl_seconds)
        return True

    async def pop(self, key: str) -> str | None:
        self._check()
        self._ttls.pop(key, None)
        return self._store.pop(key, None)

    async def delete(self, key: str) -> int:
        self._check()
        if key in self._store:
            del self._store[key]
            self._ttls.pop(key, None)
            return 1
        return 0

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set_with_ttl(key, json.dumps(value), ttl_seconds)

    async def get_json(self, key: str) -> Any | None:
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def close(self) -> None:
        pass

    def ttl(self, key: str) -> int | None:
        return self._ttls.get(key)


# ---------------------------------------------------------------------------
# In-memory analytics store
# ---------------------------------------------------------------------------


class InMemoryAnalyticsStore(AnalyticsStore):
    """Dict-backed AnalyticsStore mirroring the SQL upsert rules."""

    def __init__(self, fail: bool = False) -> None:
        self.rows: dict[tuple[str, str], dict[str, Any]] = {}
        self.patches: list[SessionPatch] = []
        self.fail = fail

    async def upsert_session(
        self, tenant_id: str, visitor_id: str, patch: SessionPatch
    ) -> None:
        if self.fail:
            raise PersistenceError("store unavailable")
        self.patches.append(patch)
        now = datetime.now(timezone.utc)
        row = self.rows.get((tenant_id, visitor_id))
        if row is None:
            self.rows[(tenant_id, visitor_id)] = {
                "tenant_id": tenant_id,
                "visitor_id": visitor_id,
                "ip_address": patch.ip_address,
                "visitor_name": patch.visitor_name,
                "visitor_email": patch.visitor_email,
                "first_message": patch.message,
                "last_message": patch.message,
                "message_count": patch.message_increment,
                "started_at": now,
                "ended_at": now if patch.message_increment else None,
                "updated_at": now,
            }
            return
        row["updated_at"] = now
        if patch.message_increment:
            row["message_count"] += patch.message_increment
            row["ended_at"] = now
        if patch.message is not None:
            row["last_message"] = patch.message
            row["first_message"] = row["first_message"] or patch.message
        for field in ("ip_address", "visitor_name", "visitor_email"):
            value = getattr(patch, field)
            if value is not None:
                row[field] = value

    async def get_session(
        self, tenant_id: str, visitor_id: str
    ) -> VisitorSessionSummary | None:
        row = self.rows.get((tenant_id, visitor_id))
        return VisitorSessionSummary(**row) if row is not None else None

    async def list_sessions(
        self, tenant_id: str, limit: int = 50
    ) -> list[VisitorSessionSummary]:
        rows = [r for r in self.rows.values() if r["tenant_id"] == tenant_id]
        rows.sort(key=lambda r: r["updated_at"], reverse=True)
        return [VisitorSessionSummary(**r) for r in rows[:limit]]


# ---------------------------------------------------------------------------
# Static settings provider
# ---------------------------------------------------------------------------


class StaticSettingsProvider(SettingsProvider):
    """Serves profiles from a dict. ``error`` makes every lookup fail."""

    def __init__(
        self,
        profiles: dict[str, TenantProfile] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.profiles = profiles or {}
        self.error = error
        self.calls: list[str] = []

    async def get_settings(self, tenant_id: str) -> TenantProfile:
        self.calls.append(tenant_id)
        if self.error is not None:
            raise self.error
        try:
            return self.profiles[tenant_id]
        except KeyError:
            raise TenantNotFoundError(f"No widget settings for tenant {tenant_id}") from None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

TENANT_ID = "tenant-1"
VISITOR_ID = "visitor-1"


@pytest.fixture
def mock_llm() -> MockLLMProvider:
    """Mock LLM provider fixture."""
    return MockLLMProvider()


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Mock Redis client fixture."""
    return MockRedisClient()


@pytest.fixture
def analytics_store() -> InMemoryAnalyticsStore:
    return InMemoryAnalyticsStore()


@pytest.fixture
def policy() -> ResponsePolicy:
    return get_policy("v1")


@pytest.fixture
def sample_profile() -> TenantProfile:
    """Tenant profile as the widget settings form stores it."""
    return TenantProfile.from_widget_settings(
        TENANT_ID,
        {
            "businessName": "Bean There Cafe",
            "representativeName": "Maya",
            "businessInfo": "We serve coffee and pastries. Open 9am to 5pm, Monday to Friday.",
            "color": "#112233",
        },
    )


@pytest.fixture
def settings_provider(sample_profile: TenantProfile) -> StaticSettingsProvider:
    return StaticSettingsProvider({TENANT_ID: sample_profile})


@pytest.fixture
def orchestrator(
    settings_provider: StaticSettingsProvider,
    mock_llm: MockLLMProvider,
    analytics_store: InMemoryAnalyticsStore,
    mock_redis: MockRedisClient,
    policy: ResponsePolicy,
) -> ChatOrchestrator:
    """ChatOrchestrator over in-memory collaborators."""
    return ChatOrchestrator(
        settings_provider=settings_provider,
        llm=mock_llm,
        tracker=SessionAnalyticsTracker(analytics_store),
        history=ReplyHistory(mock_redis),  # type: ignore[arg-type]
        policy=policy,
        model_timeout_seconds=1.0,
    )


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Any) -> AsyncIterator[AsyncEngine]:
    """Async engine on a temporary SQLite file, tables created."""
    engine = build_engine(f"sqlite:///{tmp_path / 'widgetchat.db'}")
    await create_tables(engine)
    yield engine
    await close_engine(engine)


# ---------------------------------------------------------------------------
# Reply contract
# ---------------------------------------------------------------------------


def assert_reply_contract(reply: str, policy: ResponsePolicy) -> None:
    """Assert every output guarantee of the post-processor."""
    assert reply, "reply is empty"
    assert len(reply) <= policy.max_length, f"too long: {len(reply)}"

    body = reply
    emojis = [ch for ch in reply if ch in policy.allowed_emojis]
    assert len(emojis) <= 1, f"more than one emoji: {reply!r}"
    if emojis:
        assert reply.endswith(f" {emojis[0]}"), f"emoji not at end: {reply!r}"
        body = reply[: -2]
    assert body.endswith((".", "!", "?")), f"no terminal punctuation: {reply!r}"

    assert policy.find_forbidden_phrase(reply) is None, f"forbidden phrase: {reply!r}"

    stripped = body.replace("**", "").replace("<br>", "")
    for ch in "<>*_#[]`":
        assert ch not in stripped, f"markup {ch!r} left in {reply!r}"
    assert body.count("**") % 2 == 0, f"unbalanced emphasis: {reply!r}"
