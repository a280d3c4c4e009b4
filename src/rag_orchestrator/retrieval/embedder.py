"""Embedding service implementations."""

from __future__ import annotations

from hashlib import blake2b
from math import sqrt

from rag_orchestrator.retrieval.lexical import tokenize


class HashingEmbedder:
    """Deterministic feature-hashing embedder without external model calls.

    Used for tests and local runs; production deployments plug a real
    embedding service into the executor instead.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = tokenize(text, drop_stop_words=False)
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
