"""Read-only tools: channel history, server details and guild info documents."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

import discord

from ..models.batch import message_timestamp
from .base import ParameterType, Tool, ToolContext, ToolParameter, ToolPermissions, ToolResult
from .communication import resolve_text_channel

logger = logging.getLogger(__name__)

MAX_FETCH_LIMIT = 100


def _describe_message(message: discord.Message) -> Dict[str, Any]:
    author = message.author
    reference = message.reference
    return {
        "id": str(message.id),
        "content": message.content,
        "author": {
            "id": str(author.id),
            "name": author.name,
            "display_name": author.display_name,
            "bot": author.bot,
        },
        "created_at": message_timestamp(message).isoformat(),
        "reply_to_message_id": (
            str(reference.message_id) if reference and reference.message_id else None
        ),
        "attachments": [attachment.filename for attachment in message.attachments],
        "embeds": len(message.embeds),
        "reactions": [
            {"emoji": str(reaction.emoji), "count": reaction.count}
            for reaction in message.reactions
        ],
        "pinned": message.pinned,
    }


class FetchMessagesTool(Tool):
    name = "fetch_messages"
    description = (
        "Fetch recent messages from a channel's history. Use this to read context that is "
        "not part of the current conversation, such as a message being replied to."
    )
    parameters = (
        ToolParameter(
            "limit",
            ParameterType.NUMBER,
            "Number of messages to fetch (1-100, default 10)",
            minimum=1,
            maximum=MAX_FETCH_LIMIT,
            integer=True,
        ),
        ToolParameter(
            "channel_id",
            ParameterType.CHANNEL,
            "Channel to read (defaults to the current channel)",
        ),
        ToolParameter("before_message_id", ParameterType.STRING, "Only messages before this ID"),
        ToolParameter("after_message_id", ParameterType.STRING, "Only messages after this ID"),
    )
    permissions = ToolPermissions(
        bot_permissions=("read_message_history", "view_channel"), allow_in_dms=True
    )

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        limit = int(params.get("limit", 10))
        try:
            channel = await resolve_text_channel(
                context, params.get("channel_id"), self.permissions.bot_permissions
            )
        except LookupError as exc:
            return ToolResult.fail(str(exc))

        kwargs: Dict[str, Any] = {"limit": limit}
        try:
            if params.get("before_message_id"):
                kwargs["before"] = discord.Object(id=int(params["before_message_id"]))
            if params.get("after_message_id"):
                kwargs["after"] = discord.Object(id=int(params["after_message_id"]))
        except ValueError:
            return ToolResult.fail("Message IDs must be numeric")

        try:
            messages: List[discord.Message] = [
                message async for message in channel.history(**kwargs)
            ]
        except discord.Forbidden:
            return ToolResult.fail("I do not have permission to read messages in this channel")
        except discord.HTTPException as exc:
            return ToolResult.fail(f"Failed to fetch messages: {exc}")

        logger.debug("Fetched %d messages from channel %s", len(messages), channel.id)
        return ToolResult.ok(
            f"Fetched {len(messages)} messages",
            messages=[_describe_message(message) for message in messages],
            channel_id=str(channel.id),
            fetched_at=datetime.now(timezone.utc).isoformat(),
            total_fetched=len(messages),
        )


class GetServerInfoTool(Tool):
    name = "get_server_info"
    description = "Get an overview of the current server: owner, size, channels and roles."
    permissions = ToolPermissions(bot_permissions=("view_channel",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        guild = context.guild
        text_channels = len(guild.text_channels)
        voice_channels = len(guild.voice_channels)
        return ToolResult.ok(
            f"Retrieved information for {guild.name}",
            id=str(guild.id),
            name=guild.name,
            description=guild.description,
            owner_id=str(guild.owner_id) if guild.owner_id else None,
            member_count=guild.member_count,
            created_at=guild.created_at.isoformat(),
            channels={
                "total": len(guild.channels),
                "text": text_channels,
                "voice": voice_channels,
                "categories": len(guild.categories),
            },
            roles=[role.name for role in guild.roles if not role.is_default()],
            features=list(guild.features),
        )


class GetMemberInfoTool(Tool):
    name = "get_member_info"
    description = "Look up a server member: join date, roles, and whether they are timed out."
    parameters = (
        ToolParameter("user_id", ParameterType.USER, "The member to look up", required=True),
    )
    permissions = ToolPermissions(bot_permissions=("view_channel",))

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        guild = context.guild
        user_id = int(params["user_id"])
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                return ToolResult.fail("Member not found in this server")
            except discord.HTTPException as exc:
                return ToolResult.fail(f"Failed to get member info: {exc}")

        roles = sorted(
            (role for role in member.roles if not role.is_default()),
            key=lambda role: role.position,
            reverse=True,
        )
        permissions = member.guild_permissions
        return ToolResult.ok(
            f"Retrieved information for {member.display_name}",
            id=str(member.id),
            name=member.name,
            display_name=member.display_name,
            bot=member.bot,
            created_at=member.created_at.isoformat(),
            joined_at=member.joined_at.isoformat() if member.joined_at else None,
            roles=[role.name for role in roles],
            is_owner=member.id == guild.owner_id,
            is_admin=permissions.administrator,
            is_moderator=(
                permissions.manage_messages or permissions.kick_members or permissions.ban_members
            ),
            timed_out_until=(
                member.timed_out_until.isoformat() if member.is_timed_out() else None
            ),
        )


class ListInfoDocumentsTool(Tool):
    name = "list_info_documents"
    description = (
        "List the information documents moderators have stored for this server "
        "(rules, FAQs, guides). Use read_info_document to read one."
    )
    permissions = ToolPermissions()

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        database = context.database
        if database is None or not database.is_connected:
            return ToolResult.fail("Document storage is not available")
        documents = await database.list_info_documents(context.guild_id)
        return ToolResult.ok(
            f"Found {len(documents)} document(s)",
            documents=[
                {"name": document["name"], "description": document["description"]}
                for document in documents
            ],
            count=len(documents),
        )


class ReadInfoDocumentTool(Tool):
    name = "read_info_document"
    description = "Read the full content of a server information document by name."
    parameters = (
        ToolParameter("name", ParameterType.STRING, "Name of the document to read", required=True),
    )
    permissions = ToolPermissions()

    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        database = context.database
        if database is None or not database.is_connected:
            return ToolResult.fail("Document storage is not available")
        document = await database.fetch_info_document(context.guild_id, params["name"])
        if document is None:
            return ToolResult.fail(
                f"Document '{params['name']}' not found. Use list_info_documents to see what exists."
            )
        return ToolResult.ok(
            f"Read document '{document['name']}'",
            name=document["name"],
            description=document["description"],
            content=document["content"],
            updated_at=document["updated_at"].isoformat() if document.get("updated_at") else None,
        )
