"""Abstract LLM provider interface.

All model implementations inherit from this class. Pipeline code never
imports a concrete provider; the composition root builds one and injects it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

Role = Literal["user", "model"]


@dataclass(frozen=True)
class ConversationTurn:
    """One prior turn handed to the model as history."""

    role: Role
    content: str


@dataclass(frozen=True)
class LLMResponse:
    """Structured response from an LLM call, including token usage."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(
        self,
        history: list[ConversationTurn],
        new_message: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Continue a conversation with one new visitor message.

        Args:
            history: Prior turns, oldest first. For chat replies this is the
                instruction/acknowledgement seed.
            new_message: The visitor message to answer.
            max_tokens: Maximum tokens in the generated response.
            temperature: Sampling temperature (0.0-1.0).

        Returns:
            LLMResponse with text content and token usage counts.

        Raises:
            UpstreamProviderError: On network, quota, auth or API failure.
        """
        ...


def classify_provider_error(error: Exception) -> str:
    """Map an SDK error onto an UpstreamProviderError reason."""
    text = f"{type(error).__name__} {error}".lower()
    if "timeout" in text or "timed out" in text:
        return "timeout"
    if "429" in text or "rate limit" in text or "ratelimit" in text or "quota" in text:
        return "quota"
    if (
        "401" in text
        or "403" in text
        or "authentication" in text
        or "permission" in text
        or "api key" in text
    ):
        return "auth"
    if "connection" in text or "network" in text or "unavailable" in text:
        return "network"
    return "unknown"
