"""Tests for the task thread lifecycle and the inactive-thread reaper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from ery.models.thread import TaskThread, ThreadStatus
from ery.services.agent import AgentResult
from ery.services.llm import LLMError
from ery.services.thread_store import ThreadStore
from ery.services.threads import TIMEOUT_ERROR, TaskThreadManager

from .fakes import CHANNEL_ID, GUILD_ID, ScriptedAgent, make_batch, make_settings


def make_manager(agent=None, store=None, **overrides):
    store = store or ThreadStore()
    return TaskThreadManager(store, agent or ScriptedAgent(), make_settings(**overrides)), store


class TestThreadLifecycle:
    """Spawned threads always end in exactly one terminal status."""

    async def test_spawn_persists_before_processing(self):
        gate = asyncio.Event()
        manager, store = make_manager(ScriptedAgent(gate=gate))
        batch = make_batch()

        thread = await manager.spawn_thread(batch)

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.ACTIVE
        assert stored.batch_id == batch.id
        assert stored.context["messages"][0]["id"] == str(batch.messages[0].id)
        assert [t.id for t in await manager.get_active_threads(batch.channel_id)] == [thread.id]

        gate.set()
        await manager.drain()

    async def test_successful_agent_completes_thread(self):
        manager, store = make_manager()
        thread = await manager.spawn_thread(make_batch())
        await manager.drain()

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.result["termination"] == "completed"
        assert stored.error is None
        assert manager.cached_thread_count() == 0

    async def test_unsuccessful_result_fails_thread(self):
        agent = ScriptedAgent(AgentResult(success=False, error="No messages to process"))
        manager, store = make_manager(agent)
        thread = await manager.spawn_thread(make_batch())
        await manager.drain()

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.FAILED
        assert stored.error == "No messages to process"

    async def test_model_failure_fails_thread(self):
        agent = ScriptedAgent(LLMError("Both primary and fallback models failed"))
        manager, store = make_manager(agent)
        thread = await manager.spawn_thread(make_batch())
        await manager.drain()

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.FAILED
        assert stored.error == "Both primary and fallback models failed"

    async def test_unexpected_exception_fails_thread(self):
        manager, store = make_manager(ScriptedAgent(RuntimeError("boom")))
        thread = await manager.spawn_thread(make_batch())
        await manager.drain()

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.FAILED
        assert stored.error == "Unexpected error: boom"

    async def test_terminal_status_is_written_once(self, caplog):
        manager, store = make_manager(ScriptedAgent(gate=asyncio.Event()))
        thread = await manager.spawn_thread(make_batch())

        assert await manager.complete_thread(thread.id, {"summary": "done"}) is True
        assert await manager.fail_thread(thread.id, "too late") is False

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.COMPLETED
        assert stored.error is None
        assert "no longer active" in caplog.text
        await manager.drain(timeout=0.01)

    async def test_store_rejects_non_terminal_transition(self):
        store = ThreadStore()
        thread = TaskThread.from_batch(make_batch())
        await store.insert(thread)

        with pytest.raises(ValueError):
            await store.mark_finished(thread.id, ThreadStatus.ACTIVE)

    async def test_drain_cancels_threads_past_the_deadline(self):
        manager, store = make_manager(ScriptedAgent(gate=asyncio.Event()))
        thread = await manager.spawn_thread(make_batch())

        assert await manager.drain(timeout=0.01) == 1
        await asyncio.sleep(0)

        # Cancelled mid-flight; the row is left for the reaper.
        assert (await store.get(thread.id)).status is ThreadStatus.ACTIVE


class TestActiveThreadQueries:
    async def test_active_threads_read_through_to_storage(self):
        """Threads stored by an earlier process are found and cached."""
        store = ThreadStore()
        thread = TaskThread.from_batch(make_batch())
        await store.insert(thread)
        manager, _ = make_manager(store=store)

        assert manager.cached_thread_count() == 0
        active = await manager.get_active_threads(thread.channel_id)

        assert [t.id for t in active] == [thread.id]
        assert manager.cached_thread_count() == 1

    async def test_thread_limit_counts_active_threads_per_guild(self):
        gate = asyncio.Event()
        manager, _ = make_manager(ScriptedAgent(gate=gate), max_active_threads_per_guild=2)

        await manager.spawn_thread(make_batch())
        assert not await manager.has_reached_thread_limit(GUILD_ID)
        await manager.spawn_thread(make_batch())
        assert await manager.has_reached_thread_limit(GUILD_ID)
        assert not await manager.has_reached_thread_limit(GUILD_ID + 1)

        gate.set()
        await manager.drain()
        assert await manager.get_active_thread_count(GUILD_ID) == 0

    async def test_get_thread_falls_back_to_storage(self):
        manager, _ = make_manager()
        thread = await manager.spawn_thread(make_batch())
        await manager.drain()

        fetched = await manager.get_thread(thread.id)
        assert fetched.status is ThreadStatus.COMPLETED
        assert await manager.get_thread("missing") is None


class TestReaper:
    """Expiry of threads that outlive the thread timeout."""

    async def test_only_expired_threads_are_failed(self):
        store = ThreadStore()
        old = TaskThread.from_batch(make_batch())
        old.created_at = datetime.now(timezone.utc) - timedelta(minutes=10)
        fresh = TaskThread.from_batch(make_batch())
        await store.insert(old)
        await store.insert(fresh)
        manager, _ = make_manager(store=store, thread_timeout_ms=60_000)

        assert await manager.cleanup_inactive_threads() == 1

        expired = await store.get(old.id)
        assert expired.status is ThreadStatus.FAILED
        assert expired.error == TIMEOUT_ERROR
        assert (await store.get(fresh.id)).status is ThreadStatus.ACTIVE
        assert [t.id for t in await store.fetch_active(CHANNEL_ID)] == [fresh.id]

    async def test_late_completion_after_expiry_is_ignored(self):
        """A thread the reaper failed stays failed when its agent finishes afterwards."""
        gate = asyncio.Event()
        manager, store = make_manager(ScriptedAgent(gate=gate), thread_timeout_ms=60_000)
        thread = await manager.spawn_thread(make_batch())
        store._rows[thread.id]["created_at"] -= timedelta(minutes=10)
        thread.created_at -= timedelta(minutes=10)

        assert await manager.cleanup_inactive_threads() == 1
        assert manager.cached_thread_count() == 0

        gate.set()
        await manager.drain()

        stored = await store.get(thread.id)
        assert stored.status is ThreadStatus.FAILED
        assert stored.error == TIMEOUT_ERROR

    async def test_reaper_loop_runs_on_interval(self):
        store = ThreadStore()
        old = TaskThread.from_batch(make_batch())
        old.created_at = datetime.now(timezone.utc) - timedelta(minutes=10)
        await store.insert(old)
        manager, _ = make_manager(
            store=store, thread_timeout_ms=60_000, thread_cleanup_interval_ms=10
        )

        await manager.start()
        await asyncio.sleep(0.1)
        await manager.stop()

        assert (await store.get(old.id)).status is ThreadStatus.FAILED
