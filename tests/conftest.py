"""Shared test doubles: in-memory store, manual timers, recorded sleeps."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from hybrid_memory.core.memory.hybrid import HybridMemory
from hybrid_memory.core.memory.store import DurableStoreAdapter
from hybrid_memory.core.types import ConversationSnapshot, Message, Role


class FakeStore:
    """Dict-backed ConversationStore with switchable connectivity and failures."""

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.connected = True
        self.fail_next = 0  # number of upcoming saves that raise
        self.always_fail = False
        self.save_calls = 0
        self.saves: list[ConversationSnapshot] = []
        self.gate: asyncio.Event | None = None  # when set, saves wait on it

    async def is_connected(self) -> bool:
        return self.connected

    async def save(self, snapshot: ConversationSnapshot) -> None:
        self.save_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.always_fail or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            raise ConnectionError("store write failed")
        self.saves.append(snapshot)
        self.docs[snapshot.session_id] = snapshot.to_dict()

    async def load(self, session_id: str) -> dict[str, Any] | None:
        return self.docs.get(session_id)

    def put(self, session_id: str, messages: list[Message]) -> None:
        self.docs[session_id] = ConversationSnapshot(session_id, messages).to_dict()


class ManualTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    async def fire(self) -> None:
        self.fired = True
        await self.callback()


class ManualTimers:
    """Timer factory whose timers only fire when the test says so."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def active(self) -> list[ManualTimer]:
        return [t for t in self.created if not t.cancelled and not t.fired]

    async def fire_all(self) -> None:
        for timer in self.active:
            await timer.fire()


class RecordedSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def user(text: str, timestamp: int | None = None) -> Message:
    return Message(role=Role.USER, text=text, timestamp=timestamp)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def recorded_sleep():
    return RecordedSleep()


@pytest.fixture
def make_memory(fake_store, timers, recorded_sleep):
    """Factory for HybridMemory wired to the fake store and manual timers."""

    def _make(session_id: str = "session-a", **kwargs: Any) -> HybridMemory:
        adapter = DurableStoreAdapter(
            kwargs.pop("store", fake_store),
            connect_timeout=1.0,
            sleep=recorded_sleep,
        )
        kwargs.setdefault("timer_factory", timers)
        return HybridMemory(session_id, store=adapter, **kwargs)

    return _make
