"""Chat turn orchestration.

Per message:
  1. Contact form? → record visitor info in the background, acknowledge
  2. Load tenant profile (SettingsProvider)
  3. Sanitized context + seed, cached per tenant until the profile changes
  4. Model call under a timeout
  5. Post-process against the previous reply in this conversation
  6. Remember the reply, record the turn in the background, return

With a VisitorAddressResolver, the client address passed to send_message is
verified in the background and stored on the conversation's next turn.

send_message never raises for model, settings or analytics failures. The
visitor either gets a post-processed reply or the fixed apology.
"""

from __future__ import annotations

import asyncio
import time
import weakref
from dataclasses import dataclass

import structlog

from widgetchat.core.background import BackgroundTasks
from widgetchat.schemas.tenant import TenantProfile
from widgetchat.services.analytics.ip_lookup import VisitorAddressResolver
from widgetchat.services.analytics.tracker import SessionAnalyticsTracker
from widgetchat.services.chat.contact import (
    ACKNOWLEDGEMENT,
    CONTACT_FORM_PROMPT,
    ContactInfoExtractor,
)
from widgetchat.services.chat.history import ReplyHistory
from widgetchat.services.chat.policy import ResponsePolicy
from widgetchat.services.chat.postprocess import (
    APOLOGY_REPLY,
    GREETING,
    ResponsePostProcessor,
)
from widgetchat.services.chat.prompt import ConversationSeed, PromptAssembler
from widgetchat.services.chat.sanitizer import ContextSanitizer
from widgetchat.services.llm.base import LLMProvider
from widgetchat.services.settings import SettingsProvider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _CachedSeed:
    profile: TenantProfile
    seed: ConversationSeed


class ChatOrchestrator:
    """Entry point for the widget: greeting and message handling."""

    def __init__(
        self,
        settings_provider: SettingsProvider,
        llm: LLMProvider,
        tracker: SessionAnalyticsTracker,
        history: ReplyHistory,
        policy: ResponsePolicy,
        *,
        postprocessor: ResponsePostProcessor | None = None,
        sanitizer: ContextSanitizer | None = None,
        assembler: PromptAssembler | None = None,
        extractor: ContactInfoExtractor | None = None,
        ip_resolver: VisitorAddressResolver | None = None,
        tasks: BackgroundTasks | None = None,
        model_timeout_seconds: float = 10.0,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> None:
        self._settings = settings_provider
        self._llm = llm
        self._tracker = tracker
        self._history = history
        self._policy = policy
        self._postprocessor = postprocessor or ResponsePostProcessor(policy)
        self._sanitizer = sanitizer or ContextSanitizer()
        self._assembler = assembler or PromptAssembler()
        self._extractor = extractor or ContactInfoExtractor()
        self._ip_resolver = ip_resolver
        self._tasks = tasks or BackgroundTasks()
        self._model_timeout_seconds = model_timeout_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature

        self._seeds: dict[str, _CachedSeed] = {}
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def policy(self) -> ResponsePolicy:
        return self._policy

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    def start_chat(self, tenant_id: str) -> str:
        """Greeting shown when the widget opens."""
        logger.debug("chat_started", tenant_id=tenant_id)
        return GREETING

    def contact_form_prompt(self) -> str:
        """Text the widget shows above its contact form."""
        return CONTACT_FORM_PROMPT

    async def send_message(
        self,
        tenant_id: str,
        visitor_id: str,
        raw_message: str,
        ip_address: str | None = None,
    ) -> str:
        """Answer one visitor message.

        Calls for the same (tenant_id, visitor_id) are handled one at a time
        in arrival order; different conversations run concurrently.
        """
        if self._extractor.matches(raw_message):
            info = self._extractor.extract(raw_message)
            self._tasks.submit(
                self._tracker.record_visitor_info(tenant_id, visitor_id, info),
                name=f"record_visitor_info:{tenant_id}:{visitor_id}",
            )
            logger.info("contact_info_received", tenant_id=tenant_id, visitor_id=visitor_id)
            return ACKNOWLEDGEMENT

        key = (tenant_id, visitor_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        async with lock:
            return await self._answer(tenant_id, visitor_id, raw_message.strip(), ip_address)

    async def _answer(
        self,
        tenant_id: str,
        visitor_id: str,
        message: str,
        ip_address: str | None,
    ) -> str:
        start = time.perf_counter()
        reply = await self._generate(tenant_id, visitor_id, message)
        await self._history.remember(tenant_id, visitor_id, reply)
        self._record_turn(tenant_id, visitor_id, message, ip_address)

        logger.info(
            "chat_turn_complete",
            tenant_id=tenant_id,
            visitor_id=visitor_id,
            reply_len=len(reply),
            apology=reply == APOLOGY_REPLY,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        return reply

    async def _generate(self, tenant_id: str, visitor_id: str, message: str) -> str:
        try:
            profile = await self._settings.get_settings(tenant_id)
        except Exception as e:
            logger.error(
                "tenant_profile_unavailable",
                tenant_id=tenant_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return APOLOGY_REPLY

        seed = self._seed_for(profile)
        try:
            response = await asyncio.wait_for(
                self._llm.complete(
                    seed.turns,
                    message,
                    max_tokens=self._max_tokens,
                    temperature=self._temperature,
                ),
                timeout=self._model_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "model_call_timeout",
                tenant_id=tenant_id,
                timeout_seconds=self._model_timeout_seconds,
            )
            return APOLOGY_REPLY
        except Exception as e:
            logger.error(
                "model_call_failed",
                tenant_id=tenant_id,
                error=str(e),
                error_type=type(e).__name__,
                reason=getattr(e, "reason", "unknown"),
            )
            return APOLOGY_REPLY

        previous = await self._history.last_reply(tenant_id, visitor_id)
        return self._postprocessor.process(response.text, previous_reply=previous)

    def _seed_for(self, profile: TenantProfile) -> ConversationSeed:
        cached = self._seeds.get(profile.tenant_id)
        if cached is not None and cached.profile == profile:
            return cached.seed

        context = self._sanitizer.sanitize(profile)
        seed = self._assembler.build(context, self._policy)
        self._seeds[profile.tenant_id] = _CachedSeed(profile=profile, seed=seed)
        logger.info(
            "conversation_seed_built",
            tenant_id=profile.tenant_id,
            policy_version=seed.policy_version,
            fingerprint=seed.fingerprint[:12],
        )
        return seed

    def _record_turn(
        self,
        tenant_id: str,
        visitor_id: str,
        message: str,
        ip_address: str | None,
    ) -> None:
        if self._ip_resolver is None:
            turn = self._tracker.record_turn(
                tenant_id, visitor_id, message, ip_address=ip_address
            )
        else:
            turn = self._record_verified_turn(tenant_id, visitor_id, message, ip_address)
        self._tasks.submit(turn, name=f"record_turn:{tenant_id}:{visitor_id}")

    async def _record_verified_turn(
        self,
        tenant_id: str,
        visitor_id: str,
        message: str,
        ip_address: str | None,
    ) -> None:
        # Raw client addresses are never stored; a verified one rides the next turn.
        verified = await self._ip_resolver.take(tenant_id, visitor_id)
        await self._tracker.record_turn(tenant_id, visitor_id, message, ip_address=verified)
        if ip_address is not None:
            await self._ip_resolver.resolve(tenant_id, visitor_id, ip_address)

    def invalidate_tenant(self, tenant_id: str) -> None:
        """Forget the cached seed so the next message rebuilds it."""
        if self._seeds.pop(tenant_id, None) is not None:
            logger.info("conversation_seed_invalidated", tenant_id=tenant_id)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for submitted analytics and lookup work to finish."""
        await self._tasks.drain(timeout=timeout)
