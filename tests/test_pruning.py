"""Tests for the pruning engine."""

from __future__ import annotations

import pytest

from hybrid_memory.core.memory.pruning import PruningEngine
from hybrid_memory.core.memory.relevance import LexicalScorer
from hybrid_memory.core.types import Message, Role


def _msgs(*texts: str) -> list[Message]:
    return [Message(role=Role.USER, text=t, timestamp=i + 1) for i, t in enumerate(texts)]


class FixedScorer:
    """Scores by lookup; unknown texts score 0."""

    def __init__(self, scores: dict[str, float]) -> None:
        self.scores = scores

    async def score(self, message: Message, context: str) -> float:
        return self.scores.get(message.text, 0.0)


class TestPruningEngine:
    def test_excess(self):
        engine = PruningEngine(LexicalScorer(), max_message_count=3)
        assert engine.excess(2) == 0
        assert engine.excess(3) == 0
        assert engine.excess(7) == 4

    @pytest.mark.asyncio
    async def test_under_cap_is_noop(self):
        engine = PruningEngine(LexicalScorer(), max_message_count=5)
        messages = _msgs("a", "b")
        result = await engine.select(messages, "a")
        assert result.kept == messages
        assert result.removed_count == 0

    @pytest.mark.asyncio
    async def test_removes_least_relevant(self):
        engine = PruningEngine(LexicalScorer(), max_message_count=2)
        messages = _msgs("apple banana", "cherry", "apple")
        result = await engine.select(messages, "apple banana")

        assert [m.text for m in result.removed] == ["cherry"]
        assert [m.text for m in result.kept] == ["apple banana", "apple"]

    @pytest.mark.asyncio
    async def test_removes_exact_excess_and_keeps_order(self):
        scores = {"a": 0.9, "b": 0.1, "c": 0.5, "d": 0.2, "e": 0.8}
        engine = PruningEngine(FixedScorer(scores), max_message_count=3)
        result = await engine.select(_msgs("a", "b", "c", "d", "e"), "ctx")

        assert result.removed_count == 2
        assert {m.text for m in result.removed} == {"b", "d"}
        assert [m.text for m in result.kept] == ["a", "c", "e"]

    @pytest.mark.asyncio
    async def test_ties_evict_earliest_first(self):
        engine = PruningEngine(FixedScorer({}), max_message_count=2)
        result = await engine.select(_msgs("first", "second", "third", "fourth"), "ctx")

        assert [m.text for m in result.removed] == ["first", "second"]
        assert [m.text for m in result.kept] == ["third", "fourth"]

    @pytest.mark.asyncio
    async def test_failing_scorer_does_not_abort(self):
        class Flaky:
            async def score(self, message, context):
                if message.text == "bad":
                    raise RuntimeError("embedding service down")
                return 1.0

        engine = PruningEngine(Flaky(), max_message_count=2)
        result = await engine.select(_msgs("good", "bad", "fine"), "ctx")

        assert [m.text for m in result.removed] == ["bad"]
        assert [m.text for m in result.kept] == ["good", "fine"]
