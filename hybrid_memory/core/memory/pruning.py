"""Pruning engine: count-bounded eviction of the least relevant messages.

Eviction always targets ``max_message_count``. A byte-triggered pass with the
count already under the cap removes nothing, so the byte budget can stay
exceeded while the count cap is generous. Size the two limits together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import structlog

from hybrid_memory.core.memory.relevance import RelevanceScorer, score_messages
from hybrid_memory.core.types import Message

logger = structlog.get_logger()


@dataclass
class PruneResult:
    """Outcome of one pruning pass."""

    kept: list[Message] = field(default_factory=list)
    removed: list[Message] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


class PruningEngine:
    """Chooses which messages to evict when the buffer is over its count cap."""

    def __init__(self, scorer: RelevanceScorer, max_message_count: int) -> None:
        self.scorer = scorer
        self.max_message_count = max_message_count

    def excess(self, count: int) -> int:
        """How many messages a pass over ``count`` messages has to remove."""
        return max(0, count - self.max_message_count)

    async def select(self, messages: Sequence[Message], context: str) -> PruneResult:
        """Split ``messages`` into kept and removed.

        The ``excess`` lowest-scoring messages are removed; among equal scores
        the earlier-inserted message goes first. Kept messages retain their
        original relative order.
        """
        to_remove = self.excess(len(messages))
        if to_remove == 0:
            return PruneResult(kept=list(messages))

        scores = await score_messages(self.scorer, messages, context)
        # sorted() is stable, so ties keep insertion order
        least_relevant = sorted(range(len(messages)), key=lambda i: scores[i])
        evict = set(least_relevant[:to_remove])

        result = PruneResult()
        for i, message in enumerate(messages):
            if i in evict:
                result.removed.append(message)
            else:
                result.kept.append(message)

        logger.debug(
            "prune_selected",
            removed=result.removed_count,
            kept=len(result.kept),
            lowest_score=scores[least_relevant[0]],
        )
        return result
