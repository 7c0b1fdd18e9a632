"""Message queue and batch records used by the batcher."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import discord


class TriggerType(str, Enum):
    """Rule that caused a batch to be sealed."""

    MESSAGE_COUNT = "message_count"
    TIME_WINDOW = "time_window"
    BOT_MENTION = "bot_mention"
    REPLY_TO_BOT = "reply_to_bot"


@dataclass
class MessageQueue:
    """Pending messages for one channel. Mutated only from the event loop."""

    channel_id: int
    guild_id: Optional[int]
    messages: List[discord.Message] = field(default_factory=list)
    last_message_at: float = 0.0
    timer: Optional[asyncio.TimerHandle] = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def contains(self, message_id: int) -> bool:
        return any(existing.id == message_id for existing in self.messages)


def message_timestamp(message: discord.Message) -> datetime:
    created = message.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def sort_chronologically(messages: Sequence[discord.Message]) -> List[discord.Message]:
    return sorted(messages, key=message_timestamp)


def serialize_message(message: discord.Message) -> Dict[str, Any]:
    """Flatten a Discord message into a JSON-friendly dict."""

    author = message.author
    reference = getattr(message, "reference", None)
    attachments = getattr(message, "attachments", None) or []
    return {
        "id": str(message.id),
        "author_id": str(author.id),
        "author_name": getattr(author, "display_name", None) or getattr(author, "name", ""),
        "author_bot": bool(getattr(author, "bot", False)),
        "content": message.content or "",
        "created_at": message_timestamp(message).isoformat(),
        "reply_to_message_id": (
            str(reference.message_id)
            if reference is not None and reference.message_id is not None
            else None
        ),
        "attachments": [getattr(item, "filename", "attachment") for item in attachments],
    }


@dataclass(frozen=True)
class MessageBatch:
    """Immutable, chronologically ordered group of messages sealed under one trigger."""

    channel_id: int
    guild_id: Optional[int]
    messages: Tuple[discord.Message, ...]
    trigger_type: TriggerType
    trigger_message_id: Optional[int] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("A message batch needs at least one message")

    @property
    def trigger_message(self) -> discord.Message:
        if self.trigger_message_id is not None:
            for message in self.messages:
                if message.id == self.trigger_message_id:
                    return message
        return self.messages[-1]

    @property
    def channel(self) -> Any:
        return self.trigger_message.channel

    @property
    def guild(self) -> Optional[discord.Guild]:
        return self.trigger_message.guild

    def message_ids(self) -> List[int]:
        return [message.id for message in self.messages]

    def to_payload(self) -> Dict[str, Any]:
        """Serialised form persisted as a task thread's durable context."""

        return {
            "id": self.id,
            "channel_id": str(self.channel_id),
            "guild_id": str(self.guild_id) if self.guild_id is not None else None,
            "trigger_type": self.trigger_type.value,
            "trigger_message_id": (
                str(self.trigger_message_id) if self.trigger_message_id is not None else None
            ),
            "created_at": self.created_at.isoformat(),
            "messages": [serialize_message(message) for message in self.messages],
        }
