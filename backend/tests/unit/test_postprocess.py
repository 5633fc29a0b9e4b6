"""Unit tests for ResponsePostProcessor.

Tests:
  - sanitize: quotes folded, repeated marks collapsed, disallowed symbols dropped
  - validate: empty, forbidden phrase and excess emoji trigger the fallback rotation
  - format: emphasis rendered as **text**, newlines as <br>, emoji moved to the end
  - truncate: cut at a sentence boundary, hard cut when there is none
  - dedupe: a repeated reply is replaced by a follow-up filler
  - every fixed reply and every processed reply satisfies the output contract
"""

from __future__ import annotations

import pytest

from widgetchat.core.exceptions import PolicyViolation
from widgetchat.services.chat.contact import ACKNOWLEDGEMENT, CONTACT_FORM_PROMPT
from widgetchat.services.chat.policy import POLICIES, ResponsePolicy, get_policy
from widgetchat.services.chat.postprocess import (
    APOLOGY_REPLY,
    FALLBACK_REPLIES,
    FOLLOW_UP_FILLERS,
    GREETING,
    ResponsePostProcessor,
)
from tests.conftest import assert_reply_contract


@pytest.fixture
def processor(policy: ResponsePolicy) -> ResponsePostProcessor:
    return ResponsePostProcessor(policy)


class TestSanitizeStage:
    """Tests for the sanitize stage through process()."""

    def test_plain_reply_unchanged(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("We open at 9am every weekday.") == (
            "We open at 9am every weekday."
        )

    def test_curly_quotes_folded(self, processor: ResponsePostProcessor) -> None:
        raw = f"We{chr(0x2019)}re open until five."

        assert processor.process(raw) == "We're open until five."

    def test_repeated_punctuation_collapsed(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("Really?!?! Yes!!!") == "Really? Yes!"

    def test_disallowed_emoji_and_symbols_dropped(
        self, processor: ResponsePostProcessor
    ) -> None:
        assert processor.process("Great choice 🚀! Only $5 #deal") == (
            "Great choice! Only 5 deal."
        )

    def test_unknown_tags_stripped(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("<p>We deliver <span>daily</span>.</p>") == (
            "We deliver daily."
        )


class TestValidateStage:
    """Tests for validate() and the fallback rotation."""

    @pytest.mark.parametrize("raw", ["", None, "!!!", "<p></p>"])
    def test_empty_output_uses_fallback(
        self, processor: ResponsePostProcessor, raw: str | None
    ) -> None:
        assert processor.process(raw) in FALLBACK_REPLIES

    @pytest.mark.parametrize(
        "raw",
        [
            "As an AI, I cannot browse menus.",
            "My name is Maya and I can help.",
            "Let me know if you need anything.",
            "Visit www.example.com for details.",
            "See https://example.com/menu today.",
        ],
    )
    def test_forbidden_phrase_uses_fallback(
        self, processor: ResponsePostProcessor, raw: str
    ) -> None:
        assert processor.process(raw) in FALLBACK_REPLIES

    @pytest.mark.parametrize(
        "raw",
        [
            "Sure, let 😊 me know what you need.",
            "Hello, I am an😊 AI helper here.",
            "Happy to help as an 👋 AI today.",
        ],
    )
    def test_phrase_split_by_emoji_uses_fallback(
        self, processor: ResponsePostProcessor, policy: ResponsePolicy, raw: str
    ) -> None:
        reply = processor.process(raw)

        assert reply in FALLBACK_REPLIES
        assert policy.find_forbidden_phrase(reply) is None

    def test_validate_sees_phrase_behind_emoji(
        self, processor: ResponsePostProcessor
    ) -> None:
        with pytest.raises(PolicyViolation) as exc_info:
            processor.validate("let 😊 me know")

        assert exc_info.value.rule == "forbidden_phrase"

    def test_more_than_one_emoji_uses_fallback(
        self, processor: ResponsePostProcessor
    ) -> None:
        assert processor.process("Hi 😊 there 👍.") in FALLBACK_REPLIES

    def test_validate_reports_rule(self, processor: ResponsePostProcessor) -> None:
        with pytest.raises(PolicyViolation) as exc_info:
            processor.validate("I am an AI model.")

        assert exc_info.value.rule == "forbidden_phrase"

    def test_fallback_rotation(self, processor: ResponsePostProcessor) -> None:
        replies = [processor.process("") for _ in range(len(FALLBACK_REPLIES))]

        assert replies == list(FALLBACK_REPLIES)
        assert len(set(replies)) == len(FALLBACK_REPLIES)


class TestFormatStage:
    """Tests for emphasis, line breaks and emoji placement."""

    def test_markdown_bold(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("Our **best seller** is the latte.") == (
            "Our **best seller** is the latte."
        )

    def test_html_bold(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("<b>Free</b> shipping on all orders!") == (
            "**Free** shipping on all orders!"
        )

    def test_underscore_and_single_star_emphasis(
        self, processor: ResponsePostProcessor
    ) -> None:
        assert processor.process("Try the __mocha__ or the *chai*.") == (
            "Try the **mocha** or the **chai**."
        )

    def test_punctuation_moved_outside_emphasis(
        self, processor: ResponsePostProcessor
    ) -> None:
        assert processor.process("We are **open now!**") == "We are **open now**!"

    @pytest.mark.parametrize(
        "raw",
        ["Hello there.\nWe open at 9.", "Hello there.<br/>We open at 9.", "Hello there.\r\n\r\nWe open at 9."],
    )
    def test_line_breaks(self, processor: ResponsePostProcessor, raw: str) -> None:
        assert processor.process(raw) == "Hello there.<br>We open at 9."

    def test_emoji_moved_to_end(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("😊 Happy to help with your order.") == (
            "Happy to help with your order. 😊"
        )

    def test_emoji_after_punctuation_kept(self, processor: ResponsePostProcessor) -> None:
        assert processor.process("See you soon! 👋") == "See you soon! 👋"

    def test_emoji_allowed_only_by_v2(self) -> None:
        v1 = ResponsePostProcessor(get_policy("v1"))
        v2 = ResponsePostProcessor(get_policy("v2"))

        assert v1.process("Enjoy the launch ✨") == "Enjoy the launch."
        assert v2.process("Enjoy the launch ✨") == "Enjoy the launch. ✨"


class TestTruncateStage:
    """Tests for length bounding."""

    def test_cuts_at_sentence_boundary(self, processor: ResponsePostProcessor) -> None:
        reply = processor.process("We open at nine. " * 15)

        assert reply == " ".join(["We open at nine."] * 8)
        assert len(reply) <= 150

    def test_hard_cut_without_boundary(self, processor: ResponsePostProcessor) -> None:
        reply = processor.process("word " * 60)

        assert len(reply) <= 150
        assert reply.endswith(".")
        assert reply.startswith("word word")

    def test_keeps_trailing_emoji(self, processor: ResponsePostProcessor) -> None:
        reply = processor.process("We bake fresh bread daily. " * 10 + "😊")

        assert reply.endswith(". 😊")
        assert len(reply) <= 150

    def test_unbalanced_emphasis_repaired(self, processor: ResponsePostProcessor) -> None:
        raw = "Short intro. " + "**" + "very long emphasized words " * 8 + "end**."

        reply = processor.process(raw)

        assert reply == "Short intro."

    def test_longer_policy_keeps_more(self) -> None:
        raw = "We open at nine. " * 15

        assert len(ResponsePostProcessor(get_policy("v2")).process(raw)) > 150


class TestDedupeStage:
    """Tests for follow-up substitution."""

    def test_repeated_reply_replaced(self, processor: ResponsePostProcessor) -> None:
        reply = processor.process(
            "We open at nine.", previous_reply="we open  at NINE."
        )

        assert reply in FOLLOW_UP_FILLERS

    def test_different_reply_kept(self, processor: ResponsePostProcessor) -> None:
        assert processor.process(
            "We open at nine.", previous_reply="We close at five."
        ) == "We open at nine."

    def test_filler_never_equals_previous(self, processor: ResponsePostProcessor) -> None:
        previous = FOLLOW_UP_FILLERS[0]

        reply = processor.process(previous, previous_reply=previous)

        assert reply in FOLLOW_UP_FILLERS
        assert reply != previous


class TestOutputContract:
    """Every path through the pipeline satisfies the output contract."""

    @pytest.mark.parametrize("version", sorted(POLICIES))
    @pytest.mark.parametrize(
        "text",
        [GREETING, APOLOGY_REPLY, ACKNOWLEDGEMENT, CONTACT_FORM_PROMPT]
        + list(FALLBACK_REPLIES)
        + list(FOLLOW_UP_FILLERS),
    )
    def test_fixed_replies_satisfy_contract(self, version: str, text: str) -> None:
        assert_reply_contract(text, get_policy(version))

    @pytest.mark.parametrize("version", sorted(POLICIES))
    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "Sure!",
            "<script>alert(1)</script>",
            "**" * 40,
            "Our menu: * espresso * latte * mocha",
            "# Heading\n- item one\n- item two\n`code` [link](x)",
            "We 😊 love 👍 coffee 🎉",
            "a" * 400,
            "Great question!!! " * 30 + "👋",
            "**Bold start** and " + "many words here " * 20,
            "Line\n\n\n\nbreak <br><br> spam <BR/>",
            "ChatGPT says hello.",
        ],
    )
    def test_processed_replies_satisfy_contract(self, version: str, raw: str) -> None:
        policy = get_policy(version)
        processor = ResponsePostProcessor(policy)

        reply = processor.process(raw)

        assert_reply_contract(reply, policy)
        assert_reply_contract(processor.process(raw, previous_reply=reply), policy)
