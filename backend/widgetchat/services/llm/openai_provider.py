"""OpenAI chat completions provider.

Defaults match the first widget release: gpt-3.5-turbo, max_tokens=100,
temperature=0.7 and top_p=0.8.
The SDK's own retries are disabled so the orchestrator's timeout bounds the
whole call.
"""

import structlog
from openai import AsyncOpenAI

from widgetchat.core.exceptions import UpstreamProviderError
from widgetchat.services.llm.base import (
    ConversationTurn,
    LLMProvider,
    LLMResponse,
    classify_provider_error,
)

logger = structlog.get_logger(__name__)

_TIMEOUT_SECONDS = 10
_ROLE_MAP = {"user": "user", "model": "assistant"}


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions implementation of LLMProvider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        timeout_seconds: float = _TIMEOUT_SECONDS,
        top_p: float = 0.8,
    ) -> None:
        self._client = AsyncOpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self._model = model
        self._top_p = top_p
        logger.info("openai_provider_initialized", model=model)

    @staticmethod
    def _build_messages(
        history: list[ConversationTurn], new_message: str
    ) -> list[dict[str, str]]:
        messages = [
            {"role": _ROLE_MAP[turn.role], "content": turn.content} for turn in history
        ]
        messages.append({"role": "user", "content": new_message})
        return messages

    async def complete(
        self,
        history: list[ConversationTurn],
        new_message: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Answer new_message after replaying history."""
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self._build_messages(history, new_message),
                max_tokens=max_tokens,
                temperature=temperature,
                top_p=self._top_p,
            )
        except Exception as e:
            reason = classify_provider_error(e)
            logger.error(
                "openai_complete_failed",
                error=str(e),
                reason=reason,
                model=self._model,
                message_len=len(new_message),
            )
            raise UpstreamProviderError(f"OpenAI complete failed: {e}", reason=reason) from e

        text = response.choices[0].message.content or ""
        usage = response.usage
        result = LLMResponse(
            text=text,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
        logger.debug(
            "openai_complete_ok",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            message_len=len(new_message),
        )
        return result
