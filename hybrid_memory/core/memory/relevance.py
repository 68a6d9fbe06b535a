"""Relevance scoring: how related a stored message is to the current context.

Two strategies share the ``RelevanceScorer`` interface:

- ``LexicalScorer``: token-set overlap, ``|A ∩ B| / sqrt(|A| * |B|)`` in [0, 1].
- ``VectorScorer``: cosine similarity of embeddings in [-1, 1]. Any embedding
  failure degrades that single call to the lexical score.

Scorers hold no shared mutable state apart from the vector scorer's embedding
cache, so scoring calls may run concurrently.
"""

from __future__ import annotations

import asyncio
import math
import re
from collections import OrderedDict
from typing import Protocol, Sequence

import numpy as np
import structlog

from hybrid_memory.config import EmbeddingConfig
from hybrid_memory.core.memory.embedding import Embedder, LiteLLMEmbedder
from hybrid_memory.core.types import Message

logger = structlog.get_logger()

_NON_WORD = re.compile(r"\W+")


def tokenize(text: str) -> set[str]:
    """Lower-case and split on non-word runs into a set of unique tokens."""
    return {t for t in _NON_WORD.split(text.lower()) if t}


def lexical_similarity(text1: str, text2: str) -> float:
    """Word-overlap similarity; 0.0 when either text has no tokens."""
    words1 = tokenize(text1)
    words2 = tokenize(text2)
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / math.sqrt(len(words1) * len(words2))


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Cosine similarity clamped to [-1, 1].

    Returns 0.0 for mismatched dimensionality or a zero-magnitude vector.
    """
    if len(vec1) != len(vec2) or len(vec1) == 0:
        return 0.0

    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0 or not math.isfinite(denom):
        return 0.0
    return max(-1.0, min(1.0, float(np.dot(a, b)) / denom))


class RelevanceScorer(Protocol):
    """Scores a message against a context string. Never raises."""

    async def score(self, message: Message, context: str) -> float: ...


class LexicalScorer:
    """Fallback scorer using token overlap only."""

    async def score(self, message: Message, context: str) -> float:
        return lexical_similarity(message.text, context)


class VectorScorer:
    """Embedding-based scorer that falls back to lexical similarity on failure."""

    def __init__(self, embedder: Embedder, cache_size: int = 512) -> None:
        self._embedder = embedder
        self._cache_size = cache_size
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._inflight: dict[str, asyncio.Task] = {}

    async def _embed(self, text: str) -> list[float]:
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        # Concurrent scorers asking for the same text share one request.
        task = self._inflight.get(text)
        if task is None:
            task = asyncio.create_task(self._fetch(text))
            self._inflight[text] = task
            task.add_done_callback(lambda _: self._inflight.pop(text, None))
        return await asyncio.shield(task)

    async def _fetch(self, text: str) -> list[float]:
        vector = list(await self._embedder.embed(text))
        if self._cache_size > 0:
            self._cache[text] = vector
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return vector

    async def score(self, message: Message, context: str) -> float:
        try:
            message_vec = await self._embed(message.text)
            context_vec = await self._embed(context)
        except Exception as e:
            logger.warning("embedding_failed_using_lexical", error=str(e))
            return lexical_similarity(message.text, context)
        return cosine_similarity(message_vec, context_vec)


async def score_messages(
    scorer: RelevanceScorer,
    messages: Sequence[Message],
    context: str,
) -> list[float]:
    """Score every message concurrently; a failing score counts as 0.0."""

    async def _safe(message: Message) -> float:
        try:
            return await scorer.score(message, context)
        except Exception as e:
            logger.warning("relevance_score_failed", error=str(e))
            return 0.0

    return list(await asyncio.gather(*(_safe(m) for m in messages)))


def build_scorer(
    config: EmbeddingConfig | None = None,
    embedder: Embedder | None = None,
) -> RelevanceScorer:
    """Pick the scoring strategy.

    An explicitly injected embedder wins; otherwise a LiteLLM embedder is built
    when embeddings are enabled in config. Without either, scoring is lexical.
    """
    if embedder is None and config is not None and config.enabled:
        embedder = LiteLLMEmbedder.from_config(config)
    if embedder is None:
        return LexicalScorer()
    cache_size = config.cache_size if config is not None else 512
    return VectorScorer(embedder, cache_size=cache_size)
