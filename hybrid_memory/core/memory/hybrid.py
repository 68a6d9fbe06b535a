"""Hybrid conversation memory: fast in-process buffer, durable snapshot mirror.

Reads are served from the buffer only. Every mutation queues a write marker;
the batch scheduler later persists the whole buffer as the session snapshot.
When the buffer grows past its byte or count limit, the least relevant
messages (relative to the caller's current context) are evicted.

Failures of the durable store or the embedding model never propagate out of
this class: the memory keeps working in-memory and the problem is logged.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from hybrid_memory.config import HybridMemoryConfig
from hybrid_memory.core.memory.buffer import (
    MessageBuffer,
    context_line_size,
    estimate_message_size,
)
from hybrid_memory.core.memory.embedding import Embedder
from hybrid_memory.core.memory.pruning import PruningEngine
from hybrid_memory.core.memory.relevance import (
    LexicalScorer,
    RelevanceScorer,
    build_scorer,
    score_messages,
)
from hybrid_memory.core.memory.scheduler import AsyncioTimer, BatchScheduler, TimerFactory
from hybrid_memory.core.memory.store import ConversationStore, DurableStoreAdapter
from hybrid_memory.core.types import Message, WriteType

logger = structlog.get_logger()

_PREVIEW_CHARS = 100
_DEFAULT_BUDGET: Any = object()


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_CHARS:
        return f"{text[:_PREVIEW_CHARS]}... ({len(text)} chars total)"
    return text


class HybridMemory:
    """Bounded conversation memory for one active session."""

    def __init__(
        self,
        session_id: str = "default-session",
        *,
        store: DurableStoreAdapter | None = None,
        scorer: RelevanceScorer | None = None,
        max_size_bytes: int = 1 * 1024 * 1024,
        max_message_count: int = 300,
        batch_save_delay_ms: int = 2000,
        max_batch_size: int = 10,
        context_max_bytes: int = 1 * 1024 * 1024,
        write_through: bool = False,
        timer_factory: TimerFactory = AsyncioTimer,
    ) -> None:
        self._session_id = session_id
        self.store = store or DurableStoreAdapter(None)
        self.scorer = scorer or LexicalScorer()
        self.max_size_bytes = max_size_bytes
        self.max_message_count = max_message_count
        self.context_max_bytes = context_max_bytes
        self.write_through = write_through

        self.buffer = MessageBuffer()
        self.pruner = PruningEngine(self.scorer, max_message_count)
        self.scheduler = BatchScheduler(
            self._save_current,
            delay_ms=batch_save_delay_ms,
            max_batch_size=max_batch_size,
            timer_factory=timer_factory,
        )
        self._op_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: HybridMemoryConfig,
        session_id: str | None = None,
        *,
        store: ConversationStore | None = None,
        scorer: RelevanceScorer | None = None,
        embedder: Embedder | None = None,
        timer_factory: TimerFactory = AsyncioTimer,
    ) -> HybridMemory:
        """Build a memory from configuration.

        ``store`` and ``scorer`` let several instances share one connection
        and one embedding cache.
        """
        mem = config.memory
        return cls(
            session_id or mem.default_session_id,
            store=DurableStoreAdapter.from_config(config.store, store=store),
            scorer=scorer or build_scorer(config.embedding, embedder=embedder),
            max_size_bytes=mem.max_size_bytes,
            max_message_count=mem.max_message_count,
            batch_save_delay_ms=mem.batch_save_delay_ms,
            max_batch_size=mem.max_batch_size,
            context_max_bytes=mem.context_max_bytes,
            write_through=mem.write_through,
            timer_factory=timer_factory,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_store_connected(self) -> bool:
        return self.store.is_connected

    async def __aenter__(self) -> HybridMemory:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def initialize(self) -> None:
        """Load the current session's snapshot if the store is reachable."""
        connected = await self.store.check_connection()
        logger.info("memory_initialized", session_id=self._session_id, store_connected=connected)
        if connected:
            self.buffer.replace(await self.store.load(self._session_id))

    async def _save_current(self) -> bool:
        # Snapshot is taken here, when the flush starts, not when it finishes.
        return await self.store.save(self._session_id, self.buffer.snapshot())

    # --------- mutations ----------

    async def add_message(self, message: Message, context: str) -> Message:
        """Append a message, pruning against ``context`` if a limit is hit.

        Returns the message as stored (with its timestamp filled in).
        """
        logger.debug(
            "memory_add",
            session_id=self._session_id,
            role=message.role.value,
            text=_preview(message.text),
        )
        async with self._op_lock:
            message = message.with_timestamp()
            incoming = estimate_message_size(message)
            current = self.buffer.total_size()
            if current + incoming > self.max_size_bytes:
                logger.debug(
                    "byte_limit_reached",
                    current_bytes=current,
                    incoming_bytes=incoming,
                    max_bytes=self.max_size_bytes,
                )
                await self._prune(context)

            stored = self.buffer.append(message)

            if len(self.buffer) > self.max_message_count:
                await self._prune(context)

            await self.scheduler.enqueue(WriteType.ADD, {"timestamp": stored.timestamp})
            if self.write_through:
                await self.scheduler.process_batch()

        logger.debug("memory_size", session_id=self._session_id, messages=len(self.buffer))
        return stored

    async def prune(self, context: str) -> int:
        """Evict least relevant messages down to the count cap. Returns how many went."""
        async with self._op_lock:
            return await self._prune(context)

    async def _prune(self, context: str) -> int:
        result = await self.pruner.select(self.buffer.all(), context)
        if not result.removed:
            return 0

        self.buffer.replace(result.kept)
        logger.info(
            "memory_pruned",
            session_id=self._session_id,
            removed=result.removed_count,
            kept=len(result.kept),
        )
        await self.scheduler.enqueue(WriteType.PRUNE, {"removed_count": result.removed_count})
        return result.removed_count

    # --------- reads ----------

    async def get_relevant_context(
        self,
        query: str,
        max_bytes: int | None = _DEFAULT_BUDGET,
    ) -> list[Message]:
        """Messages most relevant to ``query`` first, packed under ``max_bytes``.

        Each message costs the UTF-8 size of its ``role: text`` line. Packing
        stops at the first message that would overflow the budget. Pass
        ``max_bytes=None`` for no budget.
        """
        if max_bytes is _DEFAULT_BUDGET:
            max_bytes = self.context_max_bytes

        messages = self.buffer.all()
        if not messages:
            return []

        scores = await score_messages(self.scorer, messages, query)
        # reverse=True keeps insertion order among equal scores
        order = sorted(range(len(messages)), key=lambda i: scores[i], reverse=True)
        ranked = [messages[i] for i in order]
        if max_bytes is None:
            return ranked

        used = 0
        context: list[Message] = []
        for message in ranked:
            size = context_line_size(message)
            if used + size > max_bytes:
                break
            context.append(message)
            used += size
        return context

    def get_all_messages(self) -> list[Message]:
        """All buffered messages in insertion order."""
        return self.buffer.snapshot()

    # --------- session control ----------

    async def switch_session(self, session_id: str) -> None:
        """Make ``session_id`` the active session.

        Pending writes of the current session are flushed (and waited for)
        before the buffer is cleared; the new session's snapshot is then
        loaded if the store is reachable.
        """
        if session_id == self._session_id:
            return

        async with self._op_lock:
            await self.scheduler.flush()
            dropped = self.scheduler.reset()
            if dropped:
                logger.warning(
                    "session_switch_dropped_writes",
                    session_id=self._session_id,
                    operations=dropped,
                )

            previous = self._session_id
            self._session_id = session_id
            self.buffer.clear()

            if await self.store.check_connection():
                self.buffer.replace(await self.store.load(session_id))

            logger.info(
                "session_switched",
                previous=previous,
                session_id=session_id,
                messages=len(self.buffer),
            )

    async def flush(self) -> bool:
        """Write pending changes now. Returns False if the write failed."""
        return await self.scheduler.flush()

    async def shutdown(self) -> None:
        """Flush before the instance goes away."""
        ok = await self.flush()
        logger.info("memory_shutdown", session_id=self._session_id, flushed=ok)
