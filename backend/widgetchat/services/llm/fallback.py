"""Two-provider failover for the model call.

The composition root wraps OpenAI (primary) and Gemini (secondary) in this
provider when llm_provider is "fallback". Both calls share the orchestrator's
timeout, so a slow primary leaves less time for the secondary.
"""

import structlog

from widgetchat.services.llm.base import ConversationTurn, LLMProvider, LLMResponse

logger = structlog.get_logger(__name__)


class FallbackLLMProvider(LLMProvider):
    """Answers with the secondary whenever the primary raises.

    If both fail, the secondary's error is the one that propagates.
    """

    def __init__(self, primary: LLMProvider, secondary: LLMProvider) -> None:
        self._primary = primary
        self._secondary = secondary
        logger.info(
            "fallback_provider_initialized",
            primary=type(primary).__name__,
            secondary=type(secondary).__name__,
        )

    async def complete(
        self,
        history: list[ConversationTurn],
        new_message: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> LLMResponse:
        try:
            return await self._primary.complete(
                history, new_message, max_tokens, temperature
            )
        except Exception as primary_err:
            logger.warning(
                "primary_complete_failed_falling_back",
                primary=type(self._primary).__name__,
                reason=getattr(primary_err, "reason", "unknown"),
                error=str(primary_err),
            )

        response = await self._secondary.complete(
            history, new_message, max_tokens, temperature
        )
        logger.info("secondary_complete_ok", secondary=type(self._secondary).__name__)
        return response
