"""Tests for Discord helpers: message splitting, snowflakes and mention detection."""

from types import SimpleNamespace

import pytest

from ery.utils.discord import (
    DISCORD_MAX_MESSAGE_LENGTH,
    is_bot_mentioned,
    is_snowflake,
    split_message,
    truncate,
)

from .fakes import BOT_ID, make_guild, make_message


class TestMessageSplitting:
    """Splitting long agent output into Discord-sized messages."""

    def test_short_message_no_split(self):
        """Messages under the limit come back untouched."""
        assert split_message("Hello, world!") == ["Hello, world!"]

    def test_exact_limit_no_split(self):
        """A message exactly at the limit is a single chunk."""
        message = "a" * DISCORD_MAX_MESSAGE_LENGTH
        assert split_message(message) == [message]

    def test_hard_split_without_boundaries(self):
        """A single unbroken word is cut at the limit and nothing is lost."""
        message = "a" * 5000
        result = split_message(message)
        assert len(result) == 3
        assert all(len(chunk) <= DISCORD_MAX_MESSAGE_LENGTH for chunk in result)
        assert "".join(result) == message

    def test_prefers_paragraph_breaks(self):
        """A newline past the halfway point is used as the split."""
        first = "x" * 1500
        second = "y" * 1000
        result = split_message(f"{first}\n{second}")
        assert result == [first, second]

    def test_prefers_sentence_ends(self):
        """Chunks end on a full stop when sentences are available."""
        message = "This is a sentence. " * 150
        result = split_message(message)
        assert len(result) >= 2
        for chunk in result[:-1]:
            assert chunk.endswith(".")

    def test_word_boundaries(self):
        """Without punctuation, chunks break on spaces and keep every word whole."""
        message = "word " * 500
        result = split_message(message)
        assert len(result) >= 2
        for chunk in result:
            assert set(chunk.split()) == {"word"}

    def test_custom_max_length(self):
        """The limit can be lowered."""
        result = split_message("a" * 150, max_length=100)
        assert [len(chunk) for chunk in result] == [100, 50]

    def test_formatting_preserved(self):
        """Mentions and markdown survive the split."""
        message = "<@123456789> **Bold text** `code` " * 200
        reconstructed = " ".join(split_message(message))
        assert reconstructed.count("<@123456789>") == 200
        assert "**Bold text**" in reconstructed


class TestSnowflakes:
    """Discord id validation used by tool parameters."""

    @pytest.mark.parametrize(
        "value", ["123456789012345678", 123456789012345678, "12345678901234567890"]
    )
    def test_valid_ids(self, value):
        assert is_snowflake(value)

    @pytest.mark.parametrize("value", ["1234", "abc123456789012345", "", None, True, 12.5])
    def test_invalid_ids(self, value):
        assert not is_snowflake(value)


class TestMentionDetection:
    """How the batcher decides a message addresses the bot."""

    def test_direct_mention(self):
        message = make_message(1, mentions=[SimpleNamespace(id=BOT_ID)])
        assert is_bot_mentioned(message, BOT_ID)

    def test_mention_of_a_role_the_bot_holds(self):
        guild = make_guild()
        bot_role = guild.me.roles[0]
        message = make_message(1, guild=guild, role_mentions=[bot_role])
        assert is_bot_mentioned(message, BOT_ID)

    def test_mention_of_an_unrelated_role(self):
        message = make_message(1, role_mentions=[SimpleNamespace(id=42)])
        assert not is_bot_mentioned(message, BOT_ID)

    def test_everyone_mention(self):
        message = make_message(1, mention_everyone=True)
        assert is_bot_mentioned(message, BOT_ID)

    def test_plain_message(self):
        message = make_message(1, mentions=[SimpleNamespace(id=555)])
        assert not is_bot_mentioned(message, BOT_ID)

    def test_unknown_bot_user(self):
        message = make_message(1, mention_everyone=True)
        assert not is_bot_mentioned(message, None)


def test_truncate_adds_suffix_only_when_needed():
    assert truncate("short", 10) == "short"
    assert truncate("a long sentence here", 6, "...") == "a long..."
