"""Embedding capability used by the vector relevance scorer.

The memory only depends on the ``Embedder`` protocol. ``LiteLLMEmbedder`` is
the stock implementation, routing through LiteLLM so any provider it supports
(Gemini, OpenAI, Ollama, ...) can back the scorer.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import litellm
import structlog

from hybrid_memory.config import EmbeddingConfig

logger = structlog.get_logger()

# Suppress LiteLLM's verbose logging
litellm.suppress_debug_info = True


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a vector. May raise; callers must tolerate failure."""

    async def embed(self, text: str) -> list[float]: ...


class LiteLLMEmbedder:
    """Embedder backed by ``litellm.aembedding`` with a per-call timeout."""

    def __init__(
        self,
        model: str,
        timeout: float = 10.0,
        api_key: str | None = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self._api_key = api_key

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> LiteLLMEmbedder:
        return cls(model=config.model, timeout=config.timeout, api_key=config.get_api_key())

    async def embed(self, text: str) -> list[float]:
        kwargs: dict[str, Any] = {"model": self.model, "input": [text]}
        if self._api_key:
            kwargs["api_key"] = self._api_key

        logger.debug("embedding_request", model=self.model, chars=len(text))
        response = await asyncio.wait_for(litellm.aembedding(**kwargs), timeout=self.timeout)
        return _extract_vector(response)


def _extract_vector(response: Any) -> list[float]:
    """Pull the first embedding out of a LiteLLM response.

    Raises ValueError when the response does not carry a numeric vector.
    """
    data = getattr(response, "data", None)
    if data is None and isinstance(response, dict):
        data = response.get("data")
    if not data:
        raise ValueError("Embedding response has no data")

    item = data[0]
    vector = item.get("embedding") if isinstance(item, dict) else getattr(item, "embedding", None)
    if not isinstance(vector, (list, tuple)) or not vector:
        raise ValueError("Embedding response is missing the embedding vector")

    try:
        return [float(v) for v in vector]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Embedding vector is not numeric: {e}") from e
