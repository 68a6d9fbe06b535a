"""Durable conversation storage.

- ``ConversationStore``: the capability the memory consumes (connectivity
  query plus full-snapshot upsert/read keyed by session id).
- ``SQLiteConversationStore``: SQLite-backed implementation.
- ``DurableStoreAdapter``: wraps a store with connectivity checks, retry with
  exponential backoff and degrade-to-memory-only handling. Nothing raised by
  the store escapes the adapter.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, Sequence

import aiosqlite
import structlog

from hybrid_memory.config import StoreConfig
from hybrid_memory.core.types import ConversationSnapshot, Message, now_ms

logger = structlog.get_logger()

SleepFunc = Callable[[float], Awaitable[Any]]


class ConversationStore(Protocol):
    """Durable store shared by every memory instance in the process."""

    async def is_connected(self) -> bool: ...

    async def save(self, snapshot: ConversationSnapshot) -> None:
        """Replace the stored snapshot for ``snapshot.session_id``. Raises on failure."""
        ...

    async def load(self, session_id: str) -> dict[str, Any] | None:
        """Return the raw stored document, or None when the session is unknown."""
        ...


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    session_id TEXT PRIMARY KEY,
    messages TEXT NOT NULL,
    message_count INTEGER DEFAULT 0,
    last_updated INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(last_updated DESC);
"""


class SQLiteConversationStore:
    """Conversation snapshots stored in SQLite, one row per session."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._initialized = False

    @property
    def db_path(self) -> str:
        return self._db_path

    async def _ensure_db(self) -> None:
        """Initialize database tables if needed."""
        if self._initialized:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()
        self._initialized = True

    async def is_connected(self) -> bool:
        try:
            await self._ensure_db()
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute("SELECT 1") as cursor:
                    await cursor.fetchone()
            return True
        except Exception as e:
            logger.debug("sqlite_unreachable", path=self._db_path, error=str(e))
            return False

    async def save(self, snapshot: ConversationSnapshot) -> None:
        """Upsert the full message list for a session (full replace)."""
        await self._ensure_db()

        doc = snapshot.to_dict()
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO conversations (session_id, messages, message_count, last_updated)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                     messages = excluded.messages,
                     message_count = excluded.message_count,
                     last_updated = excluded.last_updated""",
                (
                    snapshot.session_id,
                    json.dumps(doc["messages"], ensure_ascii=False),
                    len(snapshot.messages),
                    snapshot.last_updated,
                ),
            )
            await db.commit()

    async def load(self, session_id: str) -> dict[str, Any] | None:
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM conversations WHERE session_id = ?", (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
                if not row:
                    return None
                row_dict = dict(row)

        raw = row_dict["messages"]
        try:
            messages: Any = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            # Hand the raw value on; the adapter rejects it as malformed.
            messages = raw

        return {
            "session_id": row_dict["session_id"],
            "messages": messages,
            "last_updated": row_dict["last_updated"],
        }

    async def list_sessions(self, limit: int = 20) -> list[dict[str, Any]]:
        """List recently updated sessions."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """SELECT session_id, message_count, last_updated
                   FROM conversations
                   ORDER BY last_updated DESC
                   LIMIT ?""",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session's snapshot."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            result = await db.execute(
                "DELETE FROM conversations WHERE session_id = ?", (session_id,)
            )
            await db.commit()
            return result.rowcount > 0


class DurableStoreAdapter:
    """Connectivity-checked, retrying front for a ``ConversationStore``.

    ``save`` makes up to ``max_retries`` further attempts after the first,
    waiting ``base_delay_ms * 2**n`` between them (300, 600, 1200 ms by
    default). With no store, or an unreachable one, the adapter runs in
    degraded mode: saves are skipped and loads return nothing.
    """

    def __init__(
        self,
        store: ConversationStore | None,
        max_retries: int = 3,
        base_delay_ms: int = 300,
        connect_timeout: float = 5.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.store = store
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.connect_timeout = connect_timeout
        self._sleep = sleep
        self.is_connected = False

    @classmethod
    def from_config(
        cls,
        config: StoreConfig,
        store: ConversationStore | None = None,
    ) -> DurableStoreAdapter:
        if store is None and config.enabled:
            store = SQLiteConversationStore(config.resolve_db_path())
        return cls(
            store,
            max_retries=config.max_retries,
            base_delay_ms=config.retry_base_delay_ms,
            connect_timeout=config.connect_timeout,
        )

    def retry_delays(self) -> list[float]:
        """Seconds waited before each retry."""
        return [self.base_delay_ms * (2 ** n) / 1000 for n in range(self.max_retries)]

    async def check_connection(self, timeout: float | None = None) -> bool:
        """Refresh and return the connectivity flag.

        A store that does not answer within ``timeout`` seconds counts as
        unreachable.
        """
        if self.store is None:
            self.is_connected = False
            return False

        try:
            connected = await asyncio.wait_for(
                self.store.is_connected(),
                timeout=timeout if timeout is not None else self.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("store_connection_timeout", timeout=timeout or self.connect_timeout)
            connected = False
        except Exception as e:
            logger.warning("store_connection_check_failed", error=str(e))
            connected = False

        self.is_connected = bool(connected)
        return self.is_connected

    async def save(self, session_id: str, messages: Sequence[Message]) -> bool:
        """Persist ``messages`` as the session's snapshot.

        Returns False only when every attempt failed. Degraded mode counts as
        success: the buffer keeps the data, it just isn't durable.
        """
        if not await self.check_connection():
            logger.warning("store_degraded_memory_only", session_id=session_id, op="save")
            return True

        snapshot = ConversationSnapshot(
            session_id=session_id,
            messages=list(messages),
            last_updated=now_ms(),
        )
        delays = self.retry_delays()
        attempts = len(delays) + 1

        for attempt in range(attempts):
            try:
                await self.store.save(snapshot)
                logger.debug(
                    "store_saved",
                    session_id=session_id,
                    messages=len(snapshot.messages),
                    attempt=attempt + 1,
                )
                return True
            except Exception as e:
                logger.error(
                    "store_save_failed",
                    session_id=session_id,
                    attempt=attempt + 1,
                    attempts=attempts,
                    error=str(e),
                )
                if attempt < len(delays):
                    await self._sleep(delays[attempt])

        logger.error("store_save_gave_up", session_id=session_id, attempts=attempts)
        return False

    async def load(self, session_id: str) -> list[Message]:
        """Read a session's messages; any failure or malformed data yields []."""
        if not await self.check_connection():
            logger.warning("store_degraded_memory_only", session_id=session_id, op="load")
            return []

        try:
            doc = await self.store.load(session_id)
        except Exception as e:
            logger.error("store_load_failed", session_id=session_id, error=str(e))
            return []

        if not doc:
            return []

        raw_messages = doc.get("messages") if isinstance(doc, dict) else None
        if not isinstance(raw_messages, list):
            logger.warning(
                "store_snapshot_malformed",
                session_id=session_id,
                reason="messages is not a list",
            )
            return []

        messages: list[Message] = []
        for raw in raw_messages:
            try:
                messages.append(Message.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("store_message_skipped", session_id=session_id, error=str(e))

        logger.info("store_loaded", session_id=session_id, messages=len(messages))
        return messages
