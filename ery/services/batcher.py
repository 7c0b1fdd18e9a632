"""Per-channel message batching with count, time-window, mention and reply triggers."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import discord

from ..models.batch import (
    MessageBatch,
    MessageQueue,
    TriggerType,
    message_timestamp,
    sort_chronologically,
)
from ..models.config import BotSettings
from ..utils.discord import is_bot_mentioned

logger = logging.getLogger(__name__)

BatchListener = Callable[[MessageBatch], Awaitable[None]]


class MessageBatcher:
    """Collects messages per channel and seals them into immutable batches.

    Queue mutation and sealing never cross an ``await``, so a seal triggered by
    the count threshold and one triggered by the timer cannot both see the same
    messages: whichever runs first empties the queue.
    """

    def __init__(self, settings: BotSettings, client: Any):
        self._settings = settings
        self._client = client
        self._queues: Dict[int, MessageQueue] = {}
        self._listeners: List[BatchListener] = []
        self._dispatches: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def bot_user_id(self) -> Optional[int]:
        user = getattr(self._client, "user", None)
        return user.id if user is not None else None

    def add_listener(self, listener: BatchListener) -> None:
        self._listeners.append(listener)

    def get_queue(self, channel_id: int) -> Optional[MessageQueue]:
        return self._queues.get(channel_id)

    def get_queue_stats(self) -> Dict[str, Any]:
        return {
            "total_queues": len(self._queues),
            "total_messages": sum(len(queue.messages) for queue in self._queues.values()),
            "queues": {
                str(channel_id): len(queue.messages) for channel_id, queue in self._queues.items()
            },
        }

    async def add_message(self, message: discord.Message) -> Optional[MessageBatch]:
        """Queue ``message`` and seal the channel's batch if a trigger fires.

        Returns the sealed batch, or None when the message was only queued.
        """

        # Resolved before touching the queue so the insert and the trigger
        # checks below run without a suspension point.
        chain: List[discord.Message] = []
        if message.reference is not None:
            chain = await self._resolve_reply_chain(message)

        queue = self._get_or_create_queue(message)
        if queue.contains(message.id):
            logger.debug("Message %s already queued for channel %s", message.id, queue.channel_id)
            return None
        queue.messages.append(message)
        queue.last_message_at = time.monotonic()

        bot_user_id = self.bot_user_id
        if chain and any(parent.author.id == bot_user_id for parent in chain):
            for parent in chain:
                if not queue.contains(parent.id):
                    queue.messages.append(parent)
            queue.messages = sort_chronologically(queue.messages)
            logger.debug("Message %s replies to the bot; sealing channel %s", message.id, queue.channel_id)
            batch = self._seal(queue, TriggerType.REPLY_TO_BOT, message.id)
        elif is_bot_mentioned(message, bot_user_id):
            logger.debug("Bot mentioned in message %s; sealing channel %s", message.id, queue.channel_id)
            batch = self._seal(queue, TriggerType.BOT_MENTION, message.id)
        elif len(queue.messages) >= self._settings.batch_message_count:
            logger.debug("Message count threshold reached for channel %s", queue.channel_id)
            batch = self._seal(queue, TriggerType.MESSAGE_COUNT, message.id)
        else:
            self._arm_timer(queue)
            logger.debug(
                "Queued message %s for channel %s (queue size %d)",
                message.id,
                queue.channel_id,
                len(queue.messages),
            )
            return None

        if batch is not None:
            await self._emit(batch)
        return batch

    async def flush(
        self, channel_id: int, trigger: TriggerType = TriggerType.TIME_WINDOW
    ) -> Optional[MessageBatch]:
        """Seal whatever is queued for ``channel_id``. Empty or unknown queues are a no-op."""
        queue = self._queues.get(channel_id)
        if queue is None:
            logger.debug("No queue for channel %s; nothing to flush", channel_id)
            return None
        batch = self._seal(queue, trigger)
        if batch is not None:
            await self._emit(batch)
        return batch

    async def cleanup_queues(self) -> int:
        """Force-seal or drop queues idle for longer than the configured max age."""

        max_age = self._settings.max_queue_age_ms / 1000
        expired = [
            channel_id
            for channel_id, queue in self._queues.items()
            if time.monotonic() - queue.last_message_at > max_age
        ]

        cleaned = 0
        for channel_id in expired:
            queue = self._queues.get(channel_id)
            # A listener may have queued into this channel while an earlier seal was emitted.
            if queue is None or time.monotonic() - queue.last_message_at <= max_age:
                continue
            cleaned += 1
            queue.cancel_timer()
            if queue.messages:
                logger.debug(
                    "Sealing %d messages from expired queue for channel %s",
                    len(queue.messages),
                    channel_id,
                )
                batch = self._seal(queue, TriggerType.TIME_WINDOW)
                if batch is not None:
                    await self._emit(batch)
            else:
                del self._queues[channel_id]

        if cleaned:
            logger.debug("Cleaned up %d expired message queues", cleaned)
        return cleaned

    async def start(self) -> None:
        if self._cleanup_task is not None:
            logger.warning("Queue cleanup task already running")
            return

        interval = self._settings.queue_cleanup_interval_ms / 1000

        async def cleanup_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(interval)
                    await self.cleanup_queues()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Failed to clean up message queues")

        self._cleanup_task = asyncio.create_task(cleanup_loop())
        logger.info("Message queue cleanup started (interval: %.0fs)", interval)

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            finally:
                self._cleanup_task = None

        for queue in self._queues.values():
            queue.cancel_timer()
        await self.drain()

    async def drain(self) -> None:
        """Wait for timer-triggered batches still being handed to listeners."""
        if self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    # Internals -----------------------------------------------------------

    def _get_or_create_queue(self, message: discord.Message) -> MessageQueue:
        channel_id = message.channel.id
        queue = self._queues.get(channel_id)
        if queue is None:
            queue = MessageQueue(
                channel_id=channel_id,
                guild_id=message.guild.id if message.guild is not None else None,
            )
            self._queues[channel_id] = queue
        return queue

    def _arm_timer(self, queue: MessageQueue) -> None:
        loop = asyncio.get_running_loop()
        queue.cancel_timer()
        queue.timer = loop.call_later(
            self._settings.batch_time_window_ms / 1000, self._on_timer, queue.channel_id
        )

    def _on_timer(self, channel_id: int) -> None:
        queue = self._queues.get(channel_id)
        if queue is None:
            return
        queue.timer = None
        logger.debug("Time window expired for channel %s", channel_id)
        batch = self._seal(queue, TriggerType.TIME_WINDOW)
        if batch is None:
            return
        task = asyncio.get_running_loop().create_task(self._emit(batch))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    def _seal(
        self,
        queue: MessageQueue,
        trigger: TriggerType,
        trigger_message_id: Optional[int] = None,
    ) -> Optional[MessageBatch]:
        queue.cancel_timer()
        if not queue.messages:
            logger.debug("Queue for channel %s is empty; nothing to seal", queue.channel_id)
            return None

        messages = tuple(sort_chronologically(queue.messages))
        queue.messages = []
        batch = MessageBatch(
            channel_id=queue.channel_id,
            guild_id=queue.guild_id,
            messages=messages,
            trigger_type=trigger,
            trigger_message_id=trigger_message_id,
        )
        logger.info(
            "Created message batch %s for channel %s with %d messages (trigger: %s)",
            batch.id,
            batch.channel_id,
            len(messages),
            trigger.value,
        )
        return batch

    async def _emit(self, batch: MessageBatch) -> None:
        for listener in list(self._listeners):
            try:
                await listener(batch)
            except Exception:
                logger.exception("Batch listener failed for batch %s", batch.id)

    async def _resolve_reply_chain(self, message: discord.Message) -> List[discord.Message]:
        """Walk reply references upwards, newest ancestor first."""

        chain: List[discord.Message] = []
        oldest_allowed = datetime.now(timezone.utc) - timedelta(
            milliseconds=self._settings.reply_chain_max_age_ms
        )
        current = message
        for _ in range(self._settings.reply_chain_max_depth):
            reference = current.reference
            if reference is None or reference.message_id is None:
                break

            parent = reference.resolved
            if parent is None or not hasattr(parent, "author"):
                try:
                    parent = await current.channel.fetch_message(reference.message_id)
                except discord.DiscordException as exc:
                    logger.debug(
                        "Could not fetch replied-to message %s: %s", reference.message_id, exc
                    )
                    break

            if message_timestamp(parent) < oldest_allowed:
                break
            chain.append(parent)
            current = parent
        return chain
