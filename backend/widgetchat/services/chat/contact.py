"""Contact form submissions.

The widget posts its contact form as an ordinary chat message:

    Contact Information:
    Name: Jane
    Email: jane@x.com

Such messages never reach the model. The fields are parsed from the raw text
(general sanitization would strip the ``@``) and acknowledged with a fixed
reply.
"""

from __future__ import annotations

import re

from widgetchat.schemas.session import VisitorInfo

CONTACT_MARKER = "Contact Information:"
ACKNOWLEDGEMENT = (
    "Thank you for providing your contact information! "
    "How else can I assist you today?"
)
CONTACT_FORM_PROMPT = "Would you like to share your contact information?"

_MAX_FIELD_LENGTH = 254
_NAME_LINE = re.compile(r"^\s*Name:[ \t]*(.*?)\s*$", re.MULTILINE)
_EMAIL_LINE = re.compile(r"^\s*Email:[ \t]*(.*?)\s*$", re.MULTILINE)


def _field(pattern: re.Pattern[str], message: str) -> str | None:
    match = pattern.search(message)
    if match is None:
        return None
    value = match.group(1).strip()[:_MAX_FIELD_LENGTH]
    return value or None


class ContactInfoExtractor:
    """Recognizes and parses contact form messages."""

    def matches(self, message: str) -> bool:
        return CONTACT_MARKER in message

    def extract(self, message: str) -> VisitorInfo:
        """Parse Name/Email lines. Either may be missing."""
        return VisitorInfo(
            name=_field(_NAME_LINE, message),
            email=_field(_EMAIL_LINE, message),
        )
