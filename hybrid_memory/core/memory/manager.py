"""Memory manager: one hybrid memory per session over a shared store.

The durable store connection and the relevance scorer (with its embedding
cache) are process-wide; each session gets its own buffer, scheduler and
single-writer lock. Instances never coordinate with each other, which is
fine because each one writes only its own session key.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from hybrid_memory.config import HybridMemoryConfig
from hybrid_memory.core.memory.embedding import Embedder
from hybrid_memory.core.memory.hybrid import HybridMemory
from hybrid_memory.core.memory.relevance import build_scorer
from hybrid_memory.core.memory.scheduler import AsyncioTimer, TimerFactory
from hybrid_memory.core.memory.store import ConversationStore, SQLiteConversationStore

logger = structlog.get_logger()


class MemoryManager:
    """Registry of per-session memories sharing one store and scorer."""

    def __init__(
        self,
        config: HybridMemoryConfig | None = None,
        store: ConversationStore | None = None,
        embedder: Embedder | None = None,
        timer_factory: TimerFactory = AsyncioTimer,
    ) -> None:
        self._config = config or HybridMemoryConfig()
        if store is None and self._config.store.enabled:
            store = SQLiteConversationStore(self._config.store.resolve_db_path())
        self.store = store
        self.scorer = build_scorer(self._config.embedding, embedder=embedder)
        self._timer_factory = timer_factory
        self._memories: dict[str, HybridMemory] = {}
        self._lock = asyncio.Lock()

    @property
    def sessions(self) -> list[str]:
        return list(self._memories)

    async def get_memory(self, session_id: str | None = None) -> HybridMemory:
        """Return the session's memory, creating and loading it on first use."""
        session_id = session_id or self._config.memory.default_session_id
        async with self._lock:
            memory = self._memories.get(session_id)
            if memory is None:
                memory = HybridMemory.from_config(
                    self._config,
                    session_id,
                    store=self.store,
                    scorer=self.scorer,
                    timer_factory=self._timer_factory,
                )
                await memory.initialize()
                self._memories[session_id] = memory
            return memory

    async def close_session(self, session_id: str) -> bool:
        """Flush and forget one session's memory. Returns False if it wasn't open."""
        async with self._lock:
            memory = self._memories.pop(session_id, None)
        if memory is None:
            return False
        await memory.shutdown()
        return True

    async def flush_all(self) -> dict[str, bool]:
        """Flush every open session; maps session id to write success."""
        memories = list(self._memories.items())
        results = await asyncio.gather(*(m.flush() for _, m in memories))
        return {sid: ok for (sid, _), ok in zip(memories, results)}

    async def shutdown(self) -> None:
        """Flush all sessions and drop them (process exit)."""
        async with self._lock:
            memories = list(self._memories.values())
            self._memories.clear()
        for memory in memories:
            await memory.shutdown()
        logger.info("memory_manager_shutdown", sessions=len(memories))

    def get_stats(self) -> dict[str, Any]:
        """Get memory system statistics."""
        return {
            "sessions": len(self._memories),
            "store_configured": self.store is not None,
            "scorer": type(self.scorer).__name__,
            "per_session": {
                sid: {
                    "messages": len(m.buffer),
                    "bytes": m.buffer.total_size(),
                    "pending_writes": len(m.scheduler.pending),
                    "store_connected": m.is_store_connected,
                }
                for sid, m in self._memories.items()
            },
        }
