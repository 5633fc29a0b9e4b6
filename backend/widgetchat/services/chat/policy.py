"""Versioned response policies.

A single ResponsePolicy value parameterizes both the prompt rules and the
post-processing pipeline, so one version string reproduces the exact
behaviour of a given deployment.
"""

from __future__ import annotations

from dataclasses import dataclass

from widgetchat.core.exceptions import PolicyNotFoundError

# Every fixed reply in the pipeline must fit the smallest policy.
MIN_MAX_LENGTH = 100


@dataclass(frozen=True)
class ResponsePolicy:
    """Immutable response constraints for one policy version."""

    version: str
    max_length: int
    allowed_emojis: tuple[str, ...]
    forbidden_phrases: tuple[str, ...]
    tone: str = "helpful, friendly and professional"

    def __post_init__(self) -> None:
        if self.max_length < MIN_MAX_LENGTH:
            raise ValueError(
                f"max_length must be at least {MIN_MAX_LENGTH}, got {self.max_length}"
            )
        for emoji in self.allowed_emojis:
            if len(emoji) != 1:
                raise ValueError(f"emoji must be a single code point: {emoji!r}")
        for phrase in self.forbidden_phrases:
            if not phrase.strip():
                raise ValueError("forbidden phrases must be non-empty")

    def find_forbidden_phrase(self, text: str) -> str | None:
        """Return the first forbidden phrase found in text (case-insensitive)."""
        lowered = text.lower()
        for phrase in self.forbidden_phrases:
            if phrase.lower() in lowered:
                return phrase
        return None

    def count_emojis(self, text: str) -> int:
        return sum(1 for ch in text if ch in self.allowed_emojis)


_SELF_REFERENCE = (
    "i am an ai",
    "i'm an ai",
    "as an ai",
    "ai assistant",
    "language model",
    "chatgpt",
    "openai",
    "my name is",
)

_META_LANGUAGE = (
    "let me know",
    "as mentioned",
    "business information",
    "i was told",
    "my instructions",
)

# Raw links lose their punctuation in sanitization and read as garbage.
_LINK_FRAGMENTS = (
    "http",
    "www.",
)


POLICIES: dict[str, ResponsePolicy] = {
    # First widget release: replies under 150 characters.
    "v1": ResponsePolicy(
        version="v1",
        max_length=150,
        allowed_emojis=("😊", "👋", "👍", "🙂"),
        forbidden_phrases=_SELF_REFERENCE + _META_LANGUAGE + _LINK_FRAGMENTS,
    ),
    "v2": ResponsePolicy(
        version="v2",
        max_length=300,
        allowed_emojis=("😊", "👋", "👍", "🙂", "✨", "🎉"),
        forbidden_phrases=_SELF_REFERENCE + _META_LANGUAGE + _LINK_FRAGMENTS,
        tone="warm, concise and professional",
    ),
}


def get_policy(version: str) -> ResponsePolicy:
    """Look up a registered policy by version."""
    try:
        return POLICIES[version]
    except KeyError:
        raise PolicyNotFoundError(f"Unknown response policy version: {version}") from None
