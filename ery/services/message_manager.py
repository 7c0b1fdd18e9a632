"""Routes sealed batches from the batcher to the task thread manager."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, DefaultDict, Dict, Optional

import discord

from ..models.batch import MessageBatch
from .batcher import MessageBatcher
from .threads import TaskThreadManager

logger = logging.getLogger(__name__)


class MessageManager:
    """Entry point for inbound messages and owner of the batch-ready channel."""

    def __init__(
        self,
        batcher: MessageBatcher,
        thread_manager: TaskThreadManager,
        *,
        drain_timeout: float = 10.0,
    ):
        self._batcher = batcher
        self._threads = thread_manager
        self._drain_timeout = drain_timeout
        self._guild_locks: DefaultDict[Optional[int], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._dropped_batches = 0
        self._spawned_threads = 0
        self._batcher.add_listener(self.handle_batch_ready)

    async def add_message(self, message: discord.Message) -> Optional[MessageBatch]:
        return await self._batcher.add_message(message)

    async def handle_batch_ready(self, batch: MessageBatch) -> None:
        """Spawn a thread for ``batch`` unless its guild is at the active-thread limit.

        The check and the insert share a per-guild lock, so batches for one
        guild arriving together cannot both pass the check on the same count.
        """

        logger.debug("Handling sealed batch %s", batch.id)
        try:
            async with self._guild_locks[batch.guild_id]:
                if batch.guild_id is not None and await self._threads.has_reached_thread_limit(
                    batch.guild_id
                ):
                    self._dropped_batches += 1
                    logger.warning(
                        "Guild %s has reached the task thread limit; dropping batch %s (%d messages)",
                        batch.guild_id,
                        batch.id,
                        len(batch.messages),
                    )
                    return
                thread = await self._threads.spawn_thread(batch)
        except Exception:
            logger.exception("Failed to handle sealed batch %s", batch.id)
            return
        self._spawned_threads += 1
        logger.debug("Spawned thread %s for batch %s", thread.id, batch.id)

    async def start(self) -> None:
        await self._batcher.start()
        await self._threads.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down message manager...")
        await self._batcher.stop()
        await self._threads.stop()
        await self._threads.drain(timeout=self._drain_timeout)
        logger.info("Message manager shutdown complete")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queues": self._batcher.get_queue_stats(),
            "cached_active_threads": self._threads.cached_thread_count(),
            "spawned_threads": self._spawned_threads,
            "dropped_batches": self._dropped_batches,
        }
