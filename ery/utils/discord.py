"""Discord-specific utility functions."""

from __future__ import annotations

import re
from typing import Any, List, Optional

import discord

# Discord's maximum message length
DISCORD_MAX_MESSAGE_LENGTH = 2000

SNOWFLAKE_PATTERN = re.compile(r"^\d{17,20}$")


def is_snowflake(value: Any) -> bool:
    """Return True when ``value`` looks like a Discord id (17-20 digits)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        value = str(value)
    return isinstance(value, str) and bool(SNOWFLAKE_PATTERN.match(value))


def split_message(content: str, max_length: int = DISCORD_MAX_MESSAGE_LENGTH) -> List[str]:
    """Split ``content`` into chunks that each fit in one Discord message.

    Prefers paragraph breaks, then sentence ends, then spaces; falls back to a
    hard cut when a chunk has no usable boundary past its halfway point.
    """
    if len(content) <= max_length:
        return [content]

    chunks: List[str] = []
    remaining = content
    halfway = int(max_length * 0.5)

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        split_point = max_length
        newline_pos = remaining.rfind("\n", 0, max_length)
        if newline_pos > halfway:
            split_point = newline_pos + 1
        elif "." in remaining[:max_length]:
            for i in range(max_length - 1, halfway, -1):
                if remaining[i] == "." and remaining[i + 1] in " \n":
                    split_point = i + 1
                    break
        else:
            space_pos = remaining.rfind(" ", 0, max_length)
            if space_pos > halfway:
                split_point = space_pos + 1

        chunk = remaining[:split_point].rstrip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[split_point:].lstrip()

    return chunks


def is_bot_mentioned(message: discord.Message, bot_user_id: Optional[int]) -> bool:
    """Whether ``message`` addresses the bot directly, via one of its roles, or via @everyone/@here."""
    if bot_user_id is None:
        return False

    if any(user.id == bot_user_id for user in message.mentions):
        return True

    guild = message.guild
    if guild is not None and message.role_mentions:
        bot_member = guild.me
        if bot_member is not None:
            bot_role_ids = {role.id for role in bot_member.roles}
            if any(role.id in bot_role_ids for role in message.role_mentions):
                return True

    return bool(message.mention_everyone)


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + suffix
