"""Embedding generation for semantic recall.

The engine never trains or hosts a model; it consults an external embedder
through the ``Embedder`` protocol.
"""

import math
from typing import Protocol


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def cosine_similarity(a: list[float] | None, b: list[float] | None) -> float:
    """Cosine similarity; 0.0 for missing, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingGenerator:
    """Generate embeddings for text through an external embedder.

    Vectors are cached by text, so re-ranking the same records does not
    re-embed them.
    """

    def __init__(self, embedder: Embedder, cache_size: int = 1024):
        self._embedder = embedder
        self._cache: dict[str, list[float]] = {}
        self._cache_size = cache_size

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding for a single text.

        Raises:
            ValueError: If the text is empty or whitespace-only.
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty or whitespace-only text")

        cached = self._cache.get(text)
        if cached is not None:
            return cached

        vector = await self._embedder.embed(text)
        if len(self._cache) >= self._cache_size:
            self._cache.pop(next(iter(self._cache)))
        self._cache[text] = vector
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts (1:1 with input).

        Raises:
            ValueError: If any text is empty or whitespace-only.
        """
        for i, t in enumerate(texts):
            if not t or not t.strip():
                raise ValueError(f"Empty or whitespace-only text at index {i}")
        return [await self.embed(t) for t in texts]
