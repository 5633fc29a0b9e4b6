"""Post-processing of raw model output.

Every model reply passes through five stages before a visitor sees it:

  sanitize → validate → format → truncate → dedupe

One pipeline serves every policy version; the ResponsePolicy passed to the
constructor supplies max length, the allowed emoji set and the denylist.

Output contract, on every path:
  - non-empty and at most policy.max_length characters
  - the text ends in ``.``, ``!`` or ``?``, optionally followed by a single
    space and exactly one allowed emoji (the only emoji in the reply)
  - no forbidden phrase (case-insensitive)
  - no markup except ``**emphasis**`` and the ``<br>`` line break
  - never equal to the previous reply in the same conversation

Policy violations are resolved here by substituting a reply from a small
rotation, so they never surface to callers.
"""

from __future__ import annotations

import itertools
import re

import structlog

from widgetchat.core.exceptions import PolicyViolation
from widgetchat.services.chat.policy import ResponsePolicy

logger = structlog.get_logger(__name__)

WIDGET_EMPHASIS = "**"
WIDGET_LINE_BREAK = "<br>"
TERMINAL_PUNCTUATION = (".", "!", "?")

GREETING = "Hi! How can I help you today?"
APOLOGY_REPLY = (
    "Sorry, I'm having trouble answering right now. Please try again in a moment."
)
FALLBACK_REPLIES = (
    "I'd be happy to help with that. Could you tell me a bit more?",
    "Thanks for your question! Could you share a few more details?",
    "Great question. Could you give me a little more detail so I can help?",
)
FOLLOW_UP_FILLERS = (
    "What else can I help you with today?",
    "Is there anything else you would like to know?",
    "Happy to help further. What else would you like to know?",
)

# Private-use sentinels mark emphasis spans between sanitize and format.
_EM_OPEN = chr(0xE000)
_EM_CLOSE = chr(0xE001)

# Typographic quotes, dashes and ellipsis folded to their ASCII forms.
_QUOTES = str.maketrans(
    {
        chr(0x2018): "'",
        chr(0x2019): "'",
        chr(0x201C): '"',
        chr(0x201D): '"',
        chr(0x2013): "-",
        chr(0x2014): "-",
        chr(0x2026): ".",
    }
)
_HTML_EMPHASIS = re.compile(r"<(b|strong|em|i)>(.+?)</\1>", re.IGNORECASE | re.DOTALL)
_DOUBLE_STAR = re.compile(r"\*\*(.+?)\*\*")
_DOUBLE_UNDERSCORE = re.compile(r"__(.+?)__")
_SINGLE_STAR = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])")
_LINE_BREAK_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_REPEATED_MARK = re.compile(r"([.,!?'\-])\1+")
_TERMINAL_RUN = re.compile(r"[.!?]{2,}")
_SPACE_BEFORE_MARK = re.compile(r"[^\S\n]+([.,!?])")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
_NEWLINE_RUN = re.compile(r"\s*\n\s*")
_EMPTY_EMPHASIS = re.compile(f"{_EM_OPEN}\\s*{_EM_CLOSE}")
_EMPHASIS_SPAN = re.compile(f"{_EM_OPEN}(.*?){_EM_CLOSE}", re.DOTALL)
_TRAILING_MARKS = re.compile(r"^(.*?)([.!?,]*)$", re.DOTALL)


def _normalized(text: str) -> str:
    return " ".join(text.lower().split())


def _has_words(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


class ResponsePostProcessor:
    """Applies one ResponsePolicy to raw model output."""

    def __init__(self, policy: ResponsePolicy) -> None:
        self._policy = policy
        emojis = "".join(re.escape(e) for e in policy.allowed_emojis)
        self._disallowed = re.compile(
            f"[^\\w\\s.,!?'\\-{emojis}{_EM_OPEN}{_EM_CLOSE}]|_"
        )
        self._fallbacks = itertools.cycle(FALLBACK_REPLIES)
        self._fillers = itertools.cycle(FOLLOW_UP_FILLERS)

    @property
    def policy(self) -> ResponsePolicy:
        return self._policy

    def process(self, raw: str | None, previous_reply: str | None = None) -> str:
        """Run all five stages and return a reply that meets the contract."""
        try:
            text = self.validate(self.sanitize(raw or ""))
            reply = self.truncate(self.format(text))
        except PolicyViolation as violation:
            logger.info(
                "response_policy_violation",
                rule=violation.rule,
                policy_version=self._policy.version,
            )
            reply = self.truncate(self.format(next(self._fallbacks)))
        reply = self.dedupe(reply, previous_reply)
        logger.debug(
            "response_postprocessed",
            raw_len=len(raw or ""),
            reply_len=len(reply),
            policy_version=self._policy.version,
        )
        return reply

    # ── Stage 1: sanitize ───────────────────────────────────────────

    def sanitize(self, raw: str) -> str:
        """Strip everything outside the reply alphabet, keeping emphasis spans."""
        text = raw.replace(_EM_OPEN, "").replace(_EM_CLOSE, "").translate(_QUOTES)
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = _LINE_BREAK_TAG.sub("\n", text)

        span = f"{_EM_OPEN}\\2{_EM_CLOSE}"
        text = _HTML_EMPHASIS.sub(span, text)
        span = f"{_EM_OPEN}\\1{_EM_CLOSE}"
        text = _DOUBLE_STAR.sub(span, text)
        text = _DOUBLE_UNDERSCORE.sub(span, text)
        text = _SINGLE_STAR.sub(span, text)
        text = _ANY_TAG.sub("", text)

        text = self._disallowed.sub("", text)
        text = _REPEATED_MARK.sub(r"\1", text)
        text = _TERMINAL_RUN.sub(lambda m: m.group(0)[0], text)
        text = _SPACE_BEFORE_MARK.sub(r"\1", text)
        text = _HORIZONTAL_SPACE.sub(" ", text)
        text = _NEWLINE_RUN.sub("\n", text)
        text = _EMPTY_EMPHASIS.sub("", text)
        return text.strip()

    # ── Stage 2: validate ───────────────────────────────────────────

    def validate(self, text: str) -> str:
        """Raise PolicyViolation if the sanitized text breaks the policy."""
        plain = text.replace(_EM_OPEN, "").replace(_EM_CLOSE, "")
        if not _has_words(plain):
            raise PolicyViolation("Response is empty", rule="empty")
        phrase = self._policy.find_forbidden_phrase(
            " ".join(plain.split())
        ) or self._policy.find_forbidden_phrase(self._without_emojis(plain))
        if phrase is not None:
            raise PolicyViolation(f"Forbidden phrase: {phrase}", rule="forbidden_phrase")
        if self._policy.count_emojis(plain) > 1:
            raise PolicyViolation("More than one emoji", rule="emoji_count")
        return text

    def _without_emojis(self, plain: str) -> str:
        """The words as format() leaves them once the emoji is moved out."""
        for emoji in self._policy.allowed_emojis:
            plain = plain.replace(emoji, "")
        plain = _SPACE_BEFORE_MARK.sub(r"\1", " ".join(plain.split()))
        return plain

    # ── Stage 3: format ─────────────────────────────────────────────

    def format(self, text: str) -> str:
        """Render widget markup and move the single emoji to the end."""
        emoji = next((ch for ch in text if ch in self._policy.allowed_emojis), None)
        if emoji is not None:
            text = text.replace(emoji, "")
            text = _HORIZONTAL_SPACE.sub(" ", text)
            text = _SPACE_BEFORE_MARK.sub(r"\1", text)

        text = _EMPHASIS_SPAN.sub(self._render_emphasis, text)
        text = text.replace(_EM_OPEN, "").replace(_EM_CLOSE, "")

        lines = [line.strip() for line in text.split("\n")]
        body = WIDGET_LINE_BREAK.join(line for line in lines if line)
        if emoji is None:
            return body
        return f"{body} {emoji}" if body else emoji

    @staticmethod
    def _render_emphasis(match: re.Match[str]) -> str:
        inner = match.group(1).strip()
        words, marks = _TRAILING_MARKS.match(inner).groups()
        words = words.strip()
        if not words:
            return marks
        return f"{WIDGET_EMPHASIS}{words}{WIDGET_EMPHASIS}{marks}"

    # ── Stage 4: truncate ───────────────────────────────────────────

    def truncate(self, text: str) -> str:
        """Bound the reply to max_length and end it on terminal punctuation."""
        body, emoji = self._split_trailing_emoji(text)
        suffix = f" {emoji}" if emoji else ""
        limit = self._policy.max_length - len(suffix)

        if len(body) > limit:
            window = body[:limit]
            cut = max(window.rfind(mark) for mark in TERMINAL_PUNCTUATION)
            body = window[: cut + 1] if cut > 0 else self._hard_cut(body, limit)

        body = self._repair_markup(body)
        if not body.endswith(TERMINAL_PUNCTUATION):
            if len(body) + 1 <= limit:
                body = f"{body}."
            else:
                body = self._hard_cut(body, limit)
        if not _has_words(body):
            raise PolicyViolation("Response is empty after truncation", rule="empty")
        return body + suffix

    def _split_trailing_emoji(self, text: str) -> tuple[str, str | None]:
        text = text.strip()
        if text and text[-1] in self._policy.allowed_emojis:
            return text[:-1].rstrip(), text[-1]
        return text, None

    @staticmethod
    def _repair_markup(body: str) -> str:
        body = body.strip()
        while body.endswith(WIDGET_LINE_BREAK):
            body = body[: -len(WIDGET_LINE_BREAK)].rstrip()
        if body.count(WIDGET_EMPHASIS) % 2:
            index = body.rfind(WIDGET_EMPHASIS)
            body = body[:index] + body[index + len(WIDGET_EMPHASIS):]
        return body.rstrip(" ,-'")

    @staticmethod
    def _hard_cut(body: str, limit: int) -> str:
        """Drop markup, cut to limit-1 characters and close with a period."""
        plain = body.replace(WIDGET_EMPHASIS, "").replace(WIDGET_LINE_BREAK, " ")
        plain = " ".join(plain.split())
        if len(plain) > limit - 1:
            plain = plain[: limit - 1]
            space = plain.rfind(" ")
            if space > limit // 2:
                plain = plain[:space]
        plain = plain.rstrip(" ,-'")
        if plain.endswith(TERMINAL_PUNCTUATION):
            return plain
        return f"{plain[: limit - 1]}."

    # ── Stage 5: dedupe ─────────────────────────────────────────────

    def dedupe(self, reply: str, previous_reply: str | None) -> str:
        """Swap in a follow-up filler when the reply repeats the previous one."""
        if not previous_reply or _normalized(reply) != _normalized(previous_reply):
            return reply
        for _ in range(len(FOLLOW_UP_FILLERS)):
            filler = next(self._fillers)
            if _normalized(filler) != _normalized(previous_reply):
                logger.debug("response_deduplicated", policy_version=self._policy.version)
                return filler
        return reply  # pragma: no cover
