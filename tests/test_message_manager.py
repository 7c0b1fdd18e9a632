"""Tests for routing sealed batches into task threads."""

import asyncio

from ery.models.thread import ThreadStatus
from ery.services.batcher import MessageBatcher
from ery.services.message_manager import MessageManager
from ery.services.thread_store import ThreadStore
from ery.services.threads import TaskThreadManager

from .fakes import FakeChannel, ScriptedAgent, make_batch, make_message, make_settings


class FailingStore(ThreadStore):
    async def insert(self, thread):
        raise RuntimeError("database unavailable")


def make_message_manager(bot_client, agent=None, store=None, **overrides):
    settings = make_settings(**overrides)
    store = store or ThreadStore()
    threads = TaskThreadManager(store, agent or ScriptedAgent(), settings)
    batcher = MessageBatcher(settings, bot_client)
    return MessageManager(batcher, threads, drain_timeout=1.0), threads, store


class TestBatchRouting:
    async def test_sealed_batch_spawns_thread(self, bot_client, channel):
        manager, threads, store = make_message_manager(bot_client, batch_message_count=1)

        batch = await manager.add_message(make_message(1, "hi", channel=channel))
        await threads.drain()

        assert batch is not None
        assert manager.get_stats()["spawned_threads"] == 1
        assert await store.count_active(batch.guild_id) == 0

    async def test_guild_at_limit_drops_batch(self, bot_client, channel, caplog):
        """A batch arriving while its guild is at the limit is dropped, not queued."""
        gate = asyncio.Event()
        manager, threads, store = make_message_manager(
            bot_client,
            ScriptedAgent(gate=gate),
            batch_message_count=1,
            max_active_threads_per_guild=1,
        )

        await manager.add_message(make_message(1, "first", channel=channel))
        await manager.add_message(make_message(2, "second", channel=channel))

        stats = manager.get_stats()
        assert stats["spawned_threads"] == 1
        assert stats["dropped_batches"] == 1
        assert await store.count_active(channel.guild.id) == 1
        assert "reached the task thread limit" in caplog.text

        gate.set()
        await threads.drain()

    async def test_concurrent_batches_never_exceed_limit(self, bot_client, guild):
        """With a limit of N, N+1 simultaneous batches for one guild spawn exactly N threads."""
        gate = asyncio.Event()
        manager, threads, store = make_message_manager(
            bot_client, ScriptedAgent(gate=gate), max_active_threads_per_guild=3
        )
        batches = [
            make_batch(make_message(n, "hi", channel=FakeChannel(1000 + n, guild)))
            for n in range(4)
        ]

        await asyncio.gather(*(manager.handle_batch_ready(batch) for batch in batches))

        assert await store.count_active(guild.id) == 3
        assert manager.get_stats()["dropped_batches"] == 1

        gate.set()
        await threads.drain()

    async def test_limit_applies_only_to_guild_batches(self, bot_client):
        gate = asyncio.Event()
        manager, threads, _ = make_message_manager(
            bot_client, ScriptedAgent(gate=gate), max_active_threads_per_guild=1
        )
        dm_channel = FakeChannel(4242)

        for n in range(2):
            await manager.handle_batch_ready(
                make_batch(make_message(n, "dm", channel=dm_channel, guild=None))
            )

        assert manager.get_stats()["spawned_threads"] == 2
        assert manager.get_stats()["dropped_batches"] == 0

        gate.set()
        await threads.drain()

    async def test_spawn_failure_is_contained(self, bot_client, caplog):
        manager, _, _ = make_message_manager(bot_client, store=FailingStore())

        await manager.handle_batch_ready(make_batch())

        assert manager.get_stats()["spawned_threads"] == 0
        assert "Failed to handle sealed batch" in caplog.text


class TestShutdown:
    async def test_shutdown_drains_threads_and_leaves_queues(self, bot_client, channel):
        manager, threads, store = make_message_manager(
            bot_client, batch_message_count=2, batch_time_window_ms=60_000
        )
        await manager.start()

        await manager.add_message(make_message(1, "a", channel=channel))
        batch = await manager.add_message(make_message(2, "b", channel=channel))
        await manager.add_message(make_message(3, "left queued", channel=channel))
        await manager.shutdown()

        assert await store.fetch_active() == []
        assert await threads.get_active_threads(channel.id) == []
        assert manager.get_stats()["queues"]["total_messages"] == 1
        assert manager.get_stats()["spawned_threads"] == 1
        assert batch.message_ids() == [1, 2]

    async def test_thread_outcome_is_recorded(self, bot_client, channel):
        manager, threads, store = make_message_manager(bot_client, batch_message_count=1)

        await manager.add_message(make_message(1, "hi", channel=channel))
        await manager.shutdown()

        statuses = {row["status"] for row in store._rows.values()}
        assert statuses == {ThreadStatus.COMPLETED.value}
