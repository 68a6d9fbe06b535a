"""Batch scheduler: coalesces write requests into debounced snapshot saves.

States:
    IDLE     no markers queued, no timer armed
    PENDING  markers queued; a debounce timer is armed or a flush is running

Every enqueue (re)arms the debounce timer. Reaching ``max_batch_size``
markers flushes at once instead. Only one flush runs at a time; a flush
requested while another is running is dropped. Markers queued during that
write get a fresh timer once it succeeds, since its snapshot predates them.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import structlog

from hybrid_memory.core.types import WriteMarker, WriteType

logger = structlog.get_logger()

SaveCallback = Callable[[], Awaitable[bool]]
TimerCallback = Callable[[], Awaitable[Any]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, TimerCallback], TimerHandle]


class AsyncioTimer:
    """One-shot timer running ``callback`` after ``delay`` seconds on the event loop.

    Cancelling after the callback has started is a no-op, so an in-flight
    flush is never interrupted. Live tasks are held in ``_tasks`` until they
    finish; the event loop only keeps weak references to them.
    """

    _tasks: set[asyncio.Task] = set()

    def __init__(self, delay: float, callback: TimerCallback) -> None:
        self._callback = callback
        self._fired = False
        self._task = asyncio.create_task(self._run(delay))
        AsyncioTimer._tasks.add(self._task)
        self._task.add_done_callback(AsyncioTimer._tasks.discard)

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._fired = True
        await self._callback()

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        if not self._fired:
            self._task.cancel()


class SchedulerState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class BatchScheduler:
    """Debounced, single-writer save scheduling for one memory instance."""

    def __init__(
        self,
        save: SaveCallback,
        delay_ms: int = 2000,
        max_batch_size: int = 10,
        timer_factory: TimerFactory = AsyncioTimer,
    ) -> None:
        """Initialize the scheduler.

        Args:
            save: Coroutine function writing the current buffer. Returns False
                  when the write ultimately failed.
            delay_ms: Debounce window before a queued batch is flushed.
            max_batch_size: Queue length that forces an immediate flush.
            timer_factory: Creates cancelable timers; injectable for tests.
        """
        self._save = save
        self.delay_ms = delay_ms
        self.max_batch_size = max_batch_size
        self._timer_factory = timer_factory

        self.pending: list[WriteMarker] = []
        self._carried = 0  # re-queued markers at the head of pending
        self.is_saving = False
        self._timer: TimerHandle | None = None
        self._idle = asyncio.Event()
        self._idle.set()

        self.flush_count = 0
        self.failed_flush_count = 0

    @property
    def state(self) -> SchedulerState:
        if self.pending or self._timer is not None or self.is_saving:
            return SchedulerState.PENDING
        return SchedulerState.IDLE

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    async def enqueue(self, write_type: WriteType, payload: dict[str, Any] | None = None) -> None:
        """Queue a marker and schedule the flush it calls for."""
        self.pending.append(WriteMarker(type=write_type, payload=payload or {}))
        logger.debug("write_queued", type=write_type.value, queue_size=len(self.pending))

        fresh = len(self.pending) - self._carried
        if fresh >= self.max_batch_size and not self.is_saving:
            self.cancel_timer()
            await self.process_batch()
            return

        # A full queue during an in-flight write waits for the timer instead.
        self._arm_timer()

    def _arm_timer(self) -> None:
        self.cancel_timer()
        self._timer = self._timer_factory(self.delay_ms / 1000, self._on_timer)

    async def _on_timer(self) -> None:
        self._timer = None
        await self.process_batch()

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def process_batch(self) -> bool:
        """Flush queued markers with one save.

        Returns True when a save ran and succeeded. Returns False when there
        was nothing to do, another flush was already running, or the save
        failed. A failed batch leaves one marker at the head of the queue so a
        later flush retries; no retry is scheduled here, and that marker does
        not count towards ``max_batch_size``.
        """
        if self.is_saving or not self.pending:
            return False

        self.is_saving = True
        self._idle.clear()
        batch = self.pending
        self.pending = []
        self._carried = 0
        try:
            logger.debug("batch_processing", operations=len(batch))
            ok = await self._save()
        except Exception as e:
            logger.error("batch_processing_failed", operations=len(batch), error=str(e))
            ok = False
        finally:
            self.is_saving = False
            self._idle.set()

        if ok:
            self.flush_count += 1
            logger.debug("batch_processed", operations=len(batch))
            # Markers queued during the write are not in the snapshot it took.
            if self.pending and self._timer is None:
                self._arm_timer()
        else:
            self.failed_flush_count += 1
            # One marker keeps the queue non-empty; the rest carry nothing.
            self.pending = [batch[-1], *self.pending]
            self._carried = 1
            logger.error("batch_dropped_until_next_write", operations=len(batch))
        return ok

    def reset(self) -> int:
        """Cancel the timer and discard queued markers. Returns how many were dropped."""
        self.cancel_timer()
        dropped = len(self.pending)
        self.pending = []
        self._carried = 0
        return dropped

    async def wait_idle(self) -> None:
        """Wait until no flush is in flight."""
        await self._idle.wait()

    async def flush(self) -> bool:
        """Cancel the debounce timer and write everything queued now.

        Waits for an in-flight flush first, so on return every marker queued
        before the call has been written or has failed.
        """
        self.cancel_timer()
        while self.is_saving:
            await self.wait_idle()
        # A write finishing above may have re-armed the timer.
        self.cancel_timer()
        if not self.pending:
            return True
        logger.info("flushing_pending_operations", operations=len(self.pending))
        return await self.process_batch()
