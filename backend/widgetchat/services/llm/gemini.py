"""Google Gemini provider implementation.

Uses the google-generativeai SDK chat session: the seed turns become the
chat history and the visitor message is sent as the next turn.
"""

import structlog
import google.generativeai as genai

from widgetchat.core.exceptions import UpstreamProviderError
from widgetchat.services.llm.base import (
    ConversationTurn,
    LLMProvider,
    LLMResponse,
    classify_provider_error,
)

logger = structlog.get_logger(__name__)

_TIMEOUT_SECONDS = 10


class GeminiProvider(LLMProvider):
    """Gemini Flash implementation of LLMProvider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout_seconds: float = _TIMEOUT_SECONDS,
    ) -> None:
        genai.configure(api_key=api_key)
        self._model_name = model
        self._timeout_seconds = timeout_seconds
        logger.info("gemini_provider_initialized", model=model)

    @staticmethod
    def _build_history(history: list[ConversationTurn]) -> list[dict]:
        return [{"role": turn.role, "parts": [turn.content]} for turn in history]

    @staticmethod
    def _extract_text(response: object) -> str:
        # response.text raises when Gemini returns no valid Part
        # (safety block, empty candidates).
        try:
            return response.text
        except (ValueError, AttributeError):
            text = ""
            candidates = getattr(response, "candidates", None) or []
            if candidates:
                try:
                    for part in candidates[0].content.parts:
                        if getattr(part, "text", None):
                            text += part.text
                except (IndexError, AttributeError):
                    pass
            return text

    async def complete(
        self,
        history: list[ConversationTurn],
        new_message: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Answer new_message in a chat seeded with history."""
        model = genai.GenerativeModel(model_name=self._model_name)
        chat = model.start_chat(history=self._build_history(history))
        generation_config = genai.GenerationConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
        )
        try:
            response = await chat.send_message_async(
                new_message,
                generation_config=generation_config,
                request_options={"timeout": self._timeout_seconds},
            )
        except Exception as e:
            reason = classify_provider_error(e)
            logger.error(
                "gemini_complete_failed",
                error=str(e),
                reason=reason,
                model=self._model_name,
                message_len=len(new_message),
            )
            raise UpstreamProviderError(f"Gemini complete failed: {e}", reason=reason) from e

        text = self._extract_text(response)
        if not text:
            logger.warning("gemini_empty_response", message_len=len(new_message))
        usage = getattr(response, "usage_metadata", None)
        result = LLMResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
        logger.debug(
            "gemini_complete_ok",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            message_len=len(new_message),
        )
        return result
