"""Tests for MemoryManager: per-session registry over a shared store."""

from __future__ import annotations

import pytest

from hybrid_memory.config import HybridMemoryConfig
from hybrid_memory.core.memory.manager import MemoryManager
from hybrid_memory.core.memory.relevance import LexicalScorer, VectorScorer
from hybrid_memory.core.memory.store import SQLiteConversationStore

from conftest import user


class StaticEmbedder:
    async def embed(self, text):
        return [1.0, float(len(text))]


@pytest.fixture
def manager(fake_store, timers):
    return MemoryManager(store=fake_store, timer_factory=timers)


class TestRegistry:
    @pytest.mark.asyncio
    async def test_same_session_same_instance(self, manager):
        a1 = await manager.get_memory("a")
        a2 = await manager.get_memory("a")
        b = await manager.get_memory("b")

        assert a1 is a2
        assert a1 is not b
        assert sorted(manager.sessions) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_default_session(self, manager):
        memory = await manager.get_memory()
        assert memory.session_id == "default-session"

    @pytest.mark.asyncio
    async def test_memories_share_store_and_scorer(self, manager, fake_store):
        a = await manager.get_memory("a")
        b = await manager.get_memory("b")

        assert a.store.store is fake_store
        assert b.store.store is fake_store
        assert a.scorer is b.scorer is manager.scorer
        assert a.buffer is not b.buffer
        assert a.scheduler is not b.scheduler

    @pytest.mark.asyncio
    async def test_loads_existing_snapshot(self, manager, fake_store):
        fake_store.put("a", [user("stored earlier", 1)])
        memory = await manager.get_memory("a")
        assert [m.text for m in memory.get_all_messages()] == ["stored earlier"]

    def test_embedder_selects_vector_scorer(self, fake_store):
        assert isinstance(MemoryManager(store=fake_store).scorer, LexicalScorer)
        manager = MemoryManager(store=fake_store, embedder=StaticEmbedder())
        assert isinstance(manager.scorer, VectorScorer)

    def test_sqlite_store_from_config(self, tmp_path):
        config = HybridMemoryConfig(store={"enabled": True, "db_path": str(tmp_path / "m.db")})
        manager = MemoryManager(config)
        assert isinstance(manager.store, SQLiteConversationStore)

    def test_disabled_store_is_memory_only(self):
        assert MemoryManager(HybridMemoryConfig()).store is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_sessions_write_to_their_own_keys(self, manager, fake_store):
        a = await manager.get_memory("a")
        b = await manager.get_memory("b")
        await a.add_message(user("for a"), "a")
        await b.add_message(user("for b"), "b")

        results = await manager.flush_all()

        assert results == {"a": True, "b": True}
        assert fake_store.docs["a"]["messages"][0]["text"] == "for a"
        assert fake_store.docs["b"]["messages"][0]["text"] == "for b"

    @pytest.mark.asyncio
    async def test_close_session_flushes(self, manager, fake_store):
        memory = await manager.get_memory("a")
        await memory.add_message(user("bye"), "bye")

        assert await manager.close_session("a") is True
        assert await manager.close_session("a") is False
        assert manager.sessions == []
        assert fake_store.docs["a"]["messages"][0]["text"] == "bye"

    @pytest.mark.asyncio
    async def test_shutdown_flushes_everything(self, manager, fake_store, timers):
        for sid in ("a", "b", "c"):
            memory = await manager.get_memory(sid)
            await memory.add_message(user(f"hi from {sid}"), sid)

        await manager.shutdown()

        assert set(fake_store.docs) == {"a", "b", "c"}
        assert manager.sessions == []
        assert timers.active == []

    @pytest.mark.asyncio
    async def test_sqlite_round_trip_across_managers(self, tmp_path):
        config = HybridMemoryConfig(store={"enabled": True, "db_path": str(tmp_path / "m.db")})

        first = MemoryManager(config)
        memory = await first.get_memory("chat")
        await memory.add_message(user("persist me"), "persist")
        await first.shutdown()

        second = MemoryManager(config)
        reloaded = await second.get_memory("chat")
        assert [m.text for m in reloaded.get_all_messages()] == ["persist me"]
        await second.shutdown()


class TestStats:
    @pytest.mark.asyncio
    async def test_stats(self, manager):
        memory = await manager.get_memory("a")
        await memory.add_message(user("hello"), "hello")

        stats = manager.get_stats()
        assert stats["sessions"] == 1
        assert stats["store_configured"] is True
        assert stats["scorer"] == "LexicalScorer"

        session = stats["per_session"]["a"]
        assert session["messages"] == 1
        assert session["bytes"] == memory.buffer.total_size()
        assert session["pending_writes"] == 1
        assert session["store_connected"] is True
