"""Tenant context sanitization.

Tenant-supplied text is free-form (pasted markup, control characters,
arbitrary Unicode symbols). Before any of it reaches a prompt it is reduced
to letters, digits, whitespace and ``. , ! ? -``, with whitespace collapsed.
The operation is idempotent.
"""

from __future__ import annotations

import re

from widgetchat.schemas.tenant import TenantProfile

KNOWLEDGE_PLACEHOLDER = "No additional business information provided."
DEFAULT_DISPLAY_NAME = "Our Business"
DEFAULT_AGENT_NAME = "Assistant"

# \w is Unicode-aware but includes the underscore, which is not a letter.
_DISALLOWED = re.compile(r"[^\w\s.,!?\-]|_")
_WHITESPACE = re.compile(r"\s+")


def sanitize_text(text: str | None) -> str:
    """Strip disallowed characters, collapse whitespace, trim."""
    if not text:
        return ""
    cleaned = _DISALLOWED.sub("", text)
    return _WHITESPACE.sub(" ", cleaned).strip()


class ContextSanitizer:
    """Cleans the text fields of a TenantProfile."""

    def sanitize(self, profile: TenantProfile) -> TenantProfile:
        knowledge = sanitize_text(profile.knowledge_text)
        return profile.model_copy(
            update={
                "display_name": sanitize_text(profile.display_name)
                or DEFAULT_DISPLAY_NAME,
                "agent_name": sanitize_text(profile.agent_name) or DEFAULT_AGENT_NAME,
                "knowledge_text": knowledge or KNOWLEDGE_PLACEHOLDER,
            }
        )
