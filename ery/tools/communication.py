"""Tools that produce user-visible output."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import discord

from ..utils.discord import split_message
from .base import (
    ParameterType,
    Tool,
    ToolContext,
    ToolParameter,
    ToolPermissions,
    ToolResult,
    missing_channel_permissions,
)

logger = logging.getLogger(__name__)


async def resolve_text_channel(
    context: ToolContext, channel_id: Optional[str], required: Sequence[str] = ()
) -> Any:
    """Return the target channel for a tool, defaulting to the batch's channel.

    Raises ``LookupError`` when the channel cannot be used, including when the bot
    lacks any of the ``required`` permissions there.
    """

    if not channel_id or int(channel_id) == context.channel_id:
        return context.channel
    if context.guild is None:
        raise LookupError(f"Channel with ID {channel_id} not found")
    channel = context.guild.get_channel_or_thread(int(channel_id))
    if channel is None:
        try:
            channel = await context.guild.fetch_channel(int(channel_id))
        except (discord.NotFound, discord.Forbidden) as exc:
            raise LookupError(f"Channel with ID {channel_id} not found") from exc
    if not isinstance(channel, discord.abc.Messageable):
        raise LookupError("Target channel is not a text channel")
    missing = missing_channel_permissions(channel, context.bot_member, required)
    if missing:
        raise LookupError(
            f"Bot is missing permissions in channel {channel_id}: {', '.join(missing)}"
        )
    return channel


class SendMessageTool(Tool):
    name = "send_message"
    description = (
        "Send a message to the channel. This is the only way to say anything to users; "
        "optionally reply to a specific message by its ID."
    )
    parameters = (
        ToolParameter("content", ParameterType.STRING, "The message content to send", required=True),
        ToolParameter(
            "channel_id",
            ParameterType.CHANNEL,
            "Channel to send to (defaults to the current channel)",
        ),
        ToolParameter(
            "reply_to_message_id",
            ParameterType.STRING,
            "ID of the message to reply to; omit for a regular message",
        ),
    )
    permissions = ToolPermissions(bot_permissions=("send_messages",), allow_in_dms=True)

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        content = params["content"]
        if not content.strip():
            return ToolResult.fail("Message content cannot be empty")

        try:
            channel = await resolve_text_channel(
                context, params.get("channel_id"), self.permissions.bot_permissions
            )
        except LookupError as exc:
            return ToolResult.fail(str(exc))

        reply_to_id = params.get("reply_to_message_id")
        chunks = split_message(content)
        sent = []
        try:
            if reply_to_id:
                try:
                    target = await channel.fetch_message(int(reply_to_id))
                except (ValueError, discord.NotFound) as exc:
                    return ToolResult.fail(f"Failed to fetch message with ID {reply_to_id}: {exc}")
                sent.append(await target.reply(chunks[0]))
                remaining = chunks[1:]
            else:
                remaining = chunks
            for chunk in remaining:
                sent.append(await channel.send(chunk))
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to send messages in that channel")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to send message: {exc}")

        logger.info(
            "Sent %d message(s) to channel %s (thread %s)", len(sent), channel.id, context.thread_id
        )
        return ToolResult.ok(
            "Message sent successfully",
            message_ids=[str(message.id) for message in sent],
            channel_id=str(channel.id),
            replied_to_message_id=reply_to_id,
            chunks=len(sent),
        )
