"""Moderation tools. All of them require a guild and refuse to act on the bot or the owner."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import discord

from .base import ParameterType, Tool, ToolContext, ToolParameter, ToolPermissions, ToolResult

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 512
MAX_TIMEOUT_MINUTES = 40_320  # 28 days
AUDIT_SUFFIX = " | Autonomous moderation action"

_USER_PARAMETER = ToolParameter("user_id", ParameterType.USER, "The member to act on", required=True)


def _reason(params: Dict[str, Any], label: str) -> Tuple[Optional[str], str]:
    reason = (params.get("reason") or "").strip()
    if not reason:
        return f"{label} reason cannot be empty", ""
    if len(reason) > MAX_REASON_LENGTH:
        return f"{label} reason cannot exceed {MAX_REASON_LENGTH} characters", ""
    return None, reason


async def _target_member(
    context: ToolContext, user_id: int, action: str, *, required: bool = True
) -> Tuple[Optional[str], Optional[discord.Member]]:
    """Fetch the member ``action`` targets and check the bot may act on them."""

    guild = context.guild
    bot_member = context.bot_member
    if bot_member is not None and user_id == bot_member.id:
        return f"Cannot {action} myself", None
    if user_id == guild.owner_id:
        return f"Cannot {action} the server owner", None

    member = guild.get_member(user_id)
    if member is None:
        try:
            member = await guild.fetch_member(user_id)
        except discord.NotFound:
            if required:
                return "Member not found in this server", None
            return None, None

    if bot_member is not None and member.top_role >= bot_member.top_role:
        return f"Cannot {action} a member with equal or higher roles than me", None
    return None, member


class BanMemberTool(Tool):
    name = "ban_member"
    description = "Ban a user from the server. Reserve this for serious or repeated violations."
    parameters = (
        _USER_PARAMETER,
        ToolParameter("reason", ParameterType.STRING, "Reason recorded in the audit log", required=True),
        ToolParameter(
            "delete_message_days",
            ParameterType.NUMBER,
            "Days of the user's messages to delete (0-7)",
            minimum=0,
            maximum=7,
            integer=True,
        ),
    )
    permissions = ToolPermissions(bot_permissions=("ban_members",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        error, reason = _reason(params, "Ban")
        if error:
            return ToolResult.fail(error)
        user_id = int(params["user_id"])
        error, member = await _target_member(context, user_id, "ban", required=False)
        if error:
            return ToolResult.fail(error)

        days = int(params.get("delete_message_days", 0))
        try:
            await context.guild.ban(
                discord.Object(id=user_id),
                reason=reason + AUDIT_SUFFIX,
                delete_message_seconds=days * 86_400,
            )
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to ban members")
        except discord.NotFound:
            return ToolResult.fail("User not found")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to ban member: {exc}")

        username = str(member) if member is not None else f"User ID: {user_id}"
        logger.info("Banned %s from guild %s: %s", username, context.guild_id, reason)
        return ToolResult.ok(
            f"Successfully banned {username}",
            user_id=str(user_id),
            username=username,
            reason=reason,
            delete_message_days=days,
            thread_id=context.thread_id,
        )


class KickMemberTool(Tool):
    name = "kick_member"
    description = "Kick a member from the server. They can rejoin with a new invite."
    parameters = (
        _USER_PARAMETER,
        ToolParameter("reason", ParameterType.STRING, "Reason recorded in the audit log", required=True),
    )
    permissions = ToolPermissions(bot_permissions=("kick_members",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        error, reason = _reason(params, "Kick")
        if error:
            return ToolResult.fail(error)
        error, member = await _target_member(context, int(params["user_id"]), "kick")
        if error:
            return ToolResult.fail(error)

        try:
            await member.kick(reason=reason + AUDIT_SUFFIX)
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to kick members")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to kick member: {exc}")

        logger.info("Kicked %s from guild %s: %s", member, context.guild_id, reason)
        return ToolResult.ok(
            f"Successfully kicked {member}",
            user_id=str(member.id),
            username=str(member),
            reason=reason,
            thread_id=context.thread_id,
        )


class TimeoutMemberTool(Tool):
    name = "timeout_member"
    description = "Temporarily mute a member for a number of minutes (1 minute to 28 days)."
    parameters = (
        _USER_PARAMETER,
        ToolParameter(
            "duration_minutes",
            ParameterType.NUMBER,
            "Timeout length in minutes (1-40320)",
            required=True,
            minimum=1,
            maximum=MAX_TIMEOUT_MINUTES,
            integer=True,
        ),
        ToolParameter("reason", ParameterType.STRING, "Reason recorded in the audit log", required=True),
    )
    permissions = ToolPermissions(bot_permissions=("moderate_members",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        error, reason = _reason(params, "Timeout")
        if error:
            return ToolResult.fail(error)
        error, member = await _target_member(context, int(params["user_id"]), "timeout")
        if error:
            return ToolResult.fail(error)
        if member.is_timed_out():
            return ToolResult.fail("Member is already timed out")

        minutes = int(params["duration_minutes"])
        until = discord.utils.utcnow() + timedelta(minutes=minutes)
        try:
            await member.timeout(until, reason=reason + AUDIT_SUFFIX)
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to timeout members")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to timeout member: {exc}")

        logger.info(
            "Timed out %s in guild %s for %d minutes: %s", member, context.guild_id, minutes, reason
        )
        return ToolResult.ok(
            f"Successfully timed out {member} for {minutes} minutes",
            user_id=str(member.id),
            username=str(member),
            reason=reason,
            duration_minutes=minutes,
            timeout_until=until.isoformat(),
            thread_id=context.thread_id,
        )


class DeleteMessageTool(Tool):
    name = "delete_message"
    description = "Delete a specific message in the current channel by its ID."
    parameters = (
        ToolParameter("message_id", ParameterType.STRING, "The message to delete", required=True),
        ToolParameter("reason", ParameterType.STRING, "Why the message is being removed"),
    )
    permissions = ToolPermissions(bot_permissions=("manage_messages",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        reason = params.get("reason") or "No reason provided"
        try:
            message_id = int(params["message_id"])
        except ValueError:
            return ToolResult.fail("Invalid message ID format")

        try:
            message = await context.channel.fetch_message(message_id)
        except discord.NotFound:
            return ToolResult.fail("Message not found or has already been deleted")

        deleted = {
            "id": str(message.id),
            "content": message.content,
            "author_id": str(message.author.id),
            "author": str(message.author),
        }
        try:
            await message.delete()
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to delete messages")
        except discord.NotFound:
            return ToolResult.fail("Message not found or has already been deleted")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to delete message: {exc}")

        logger.info(
            "Deleted message %s in channel %s: %s", message_id, context.channel_id, reason
        )
        return ToolResult.ok(
            f"Successfully deleted message from {deleted['author']}",
            deleted_message=deleted,
            reason=reason,
            thread_id=context.thread_id,
        )
