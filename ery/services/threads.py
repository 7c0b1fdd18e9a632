"""Task thread lifecycle: spawn, drive through the agent, complete or fail, reap."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from ..models.batch import MessageBatch
from ..models.config import BotSettings
from ..models.thread import TaskThread, ThreadStatus
from .llm import LLMError
from .thread_store import ThreadStore

if TYPE_CHECKING:
    from .agent import Agent

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "Thread timed out due to inactivity"


class TaskThreadManager:
    """Owns active task threads.

    The store is written first and is the source of truth; the per-channel
    index kept here is a read-through cache of threads believed active.
    """

    def __init__(self, store: ThreadStore, agent: "Agent", settings: BotSettings):
        self._store = store
        self._agent = agent
        self._settings = settings
        self._active: Dict[int, Dict[str, TaskThread]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._reaper_task: Optional[asyncio.Task] = None

    async def spawn_thread(self, batch: MessageBatch) -> TaskThread:
        """Persist a thread for ``batch`` and start processing it in the background.

        Returns once the row is stored. The background task always ends in
        exactly one of :meth:`complete_thread` or :meth:`fail_thread`.
        """

        thread = TaskThread.from_batch(batch)
        await self._store.insert(thread)
        self._active.setdefault(thread.channel_id, {})[thread.id] = thread

        task = asyncio.create_task(self._drive(thread), name=f"task-thread-{thread.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Spawned task thread %s for batch %s in channel %s (%d messages)",
            thread.id,
            batch.id,
            thread.channel_id,
            len(batch.messages),
        )
        return thread

    async def _drive(self, thread: TaskThread) -> None:
        try:
            result = await self._agent.process_task_thread(thread)
        except LLMError as exc:
            logger.error("Language model failed for task thread %s: %s", thread.id, exc)
            await self._finish_safely(thread.id, error=str(exc))
        except Exception as exc:
            logger.exception("Task thread %s raised during processing", thread.id)
            await self._finish_safely(thread.id, error=f"Unexpected error: {exc}")
        else:
            if result.success:
                await self._finish_safely(thread.id, result=result.to_payload())
            else:
                await self._finish_safely(
                    thread.id, error=result.error or "Agent processing failed"
                )

    async def _finish_safely(
        self,
        thread_id: str,
        *,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        try:
            if error is None:
                await self.complete_thread(thread_id, result or {})
            else:
                await self.fail_thread(thread_id, error)
        except Exception:
            logger.exception("Could not record outcome for task thread %s", thread_id)

    async def complete_thread(self, thread_id: str, result: Dict[str, Any]) -> bool:
        changed = await self._store.mark_finished(thread_id, ThreadStatus.COMPLETED, result=result)
        self._evict(thread_id)
        if changed:
            logger.info("Task thread %s completed", thread_id)
        else:
            logger.warning("Task thread %s was no longer active; completion ignored", thread_id)
        return changed

    async def fail_thread(self, thread_id: str, error: str) -> bool:
        changed = await self._store.mark_finished(thread_id, ThreadStatus.FAILED, error=error)
        self._evict(thread_id)
        if changed:
            logger.info("Task thread %s failed: %s", thread_id, error)
        else:
            logger.warning("Task thread %s was no longer active; failure ignored (%s)", thread_id, error)
        return changed

    async def get_active_threads(self, channel_id: int) -> List[TaskThread]:
        cached = self._active.get(channel_id)
        if cached:
            return list(cached.values())

        threads = await self._store.fetch_active(channel_id)
        if not threads:
            return list(self._active.get(channel_id, {}).values())
        bucket = self._active.setdefault(channel_id, {})
        for thread in threads:
            bucket.setdefault(thread.id, thread)
        logger.debug("Loaded %d active threads for channel %s from storage", len(threads), channel_id)
        return list(bucket.values())

    async def get_thread(self, thread_id: str) -> Optional[TaskThread]:
        for bucket in self._active.values():
            if thread_id in bucket:
                return bucket[thread_id]
        return await self._store.get(thread_id)

    async def get_active_thread_count(self, guild_id: Optional[int]) -> int:
        return await self._store.count_active(guild_id)

    async def has_reached_thread_limit(self, guild_id: Optional[int]) -> bool:
        count = await self.get_active_thread_count(guild_id)
        return count >= self._settings.max_active_threads_per_guild

    def cached_thread_count(self) -> int:
        return sum(len(bucket) for bucket in self._active.values())

    async def cleanup_inactive_threads(self) -> int:
        """Fail every active thread older than the thread timeout. Returns how many were failed."""

        cutoff = datetime.now(timezone.utc) - timedelta(milliseconds=self._settings.thread_timeout_ms)
        expired = await self._store.fetch_expired(cutoff)
        failed = 0
        for thread in expired:
            if await self.fail_thread(thread.id, TIMEOUT_ERROR):
                failed += 1

        for channel_id, bucket in list(self._active.items()):
            for thread_id, thread in list(bucket.items()):
                if thread.created_at < cutoff:
                    del bucket[thread_id]
            if not bucket:
                del self._active[channel_id]

        if failed:
            logger.info("Timed out %d inactive task threads", failed)
        return failed

    async def start(self) -> None:
        if self._reaper_task is not None:
            logger.warning("Thread cleanup task already running")
            return

        interval = self._settings.thread_cleanup_interval_ms / 1000

        async def reaper_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(interval)
                    await self.cleanup_inactive_threads()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Failed to clean up inactive task threads")

        self._reaper_task = asyncio.create_task(reaper_loop())
        logger.info("Task thread cleanup started (interval: %.0fs)", interval)

    async def stop(self) -> None:
        if self._reaper_task is None:
            return
        self._reaper_task.cancel()
        try:
            await self._reaper_task
        except asyncio.CancelledError:
            pass
        finally:
            self._reaper_task = None

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight threads. Returns how many were still running at the deadline."""

        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                "%d task threads still running at shutdown; the reaper will expire them", len(pending)
            )
            for task in pending:
                task.cancel()
        return len(pending)

    def _evict(self, thread_id: str) -> None:
        for channel_id, bucket in list(self._active.items()):
            if bucket.pop(thread_id, None) is not None and not bucket:
                del self._active[channel_id]
