"""In-memory adapters used for tests and local prototyping."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from math import sqrt
from typing import Any

from rag_orchestrator.retrieval.adapters import AdapterRecord, AuthoritativeRecord
from rag_orchestrator.retrieval.embedder import HashingEmbedder
from rag_orchestrator.retrieval.lexical import tokenize
from rag_orchestrator.types import Chunk


@dataclass(slots=True)
class _StoredVector:
    chunk: Chunk
    embedding: list[float]


def _record(chunk: Chunk, score: float) -> AdapterRecord:
    metadata: dict[str, Any] = dict(chunk.metadata)
    metadata["uri"] = chunk.uri
    if chunk.last_modified is not None:
        metadata["last_modified"] = chunk.last_modified.isoformat()
    if chunk.author is not None:
        metadata["author"] = chunk.author
    return AdapterRecord(chunk_id=chunk.chunk_id, score=score, text=chunk.text, metadata=metadata)


def _ranked(scored: list[tuple[Chunk, float]], top_k: int) -> list[AdapterRecord]:
    scored.sort(key=lambda item: (-item[1], item[0].chunk_id))
    return [_record(chunk, score) for chunk, score in scored[:top_k]]


class InMemoryVectorIndex:
    """Cosine-similarity search over per-namespace vectors."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, _StoredVector]] = {}

    def upsert(
        self, namespace: str, chunks: Sequence[Chunk], embeddings: Sequence[list[float]]
    ) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        store = self._namespaces.setdefault(namespace, {})
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            store[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=list(embedding))

    async def query(
        self, namespace: str, vector: Sequence[float], top_k: int
    ) -> list[AdapterRecord]:
        store = self._namespaces.get(namespace, {})
        scored = [
            (record.chunk, _cosine_similarity(vector, record.embedding))
            for record in store.values()
        ]
        return _ranked(scored, top_k)


class InMemoryLexicalIndex:
    """Token-overlap keyword search; non-matching chunks are never returned."""

    def __init__(self) -> None:
        self._indexes: dict[str, dict[str, tuple[Chunk, frozenset[str]]]] = {}

    def add(self, index: str, chunks: Sequence[Chunk]) -> None:
        store = self._indexes.setdefault(index, {})
        for chunk in chunks:
            store[chunk.chunk_id] = (chunk, frozenset(tokenize(chunk.text, drop_stop_words=False)))

    async def query(
        self, index: str, tokens: Sequence[str], top_k: int
    ) -> list[AdapterRecord]:
        query_tokens = set(tokens)
        if not query_tokens:
            return []
        scored: list[tuple[Chunk, float]] = []
        for chunk, chunk_tokens in self._indexes.get(index, {}).values():
            overlap = len(query_tokens & chunk_tokens)
            if overlap:
                scored.append((chunk, overlap / len(query_tokens)))
        return _ranked(scored, top_k)


class InMemoryMetadataRegistry:
    """Authoritative records keyed by (source, entity id)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], AuthoritativeRecord] = {}

    def put(self, record: AuthoritativeRecord) -> None:
        self._records[(record.source, record.entity_id)] = record

    async def lookup(self, source: str, entity_id: str) -> AuthoritativeRecord | None:
        return self._records.get((source, entity_id.lstrip("#")))


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def index_chunks(
    embedder: HashingEmbedder,
    vector: InMemoryVectorIndex,
    lexical: InMemoryLexicalIndex,
    source: str,
    chunks: Sequence[Chunk],
) -> int:
    """Embed pre-chunked content and load it into both indexes under `source`."""
    vector.upsert(source, chunks, [embedder.embed_sync(chunk.text) for chunk in chunks])
    lexical.add(source, chunks)
    return len(chunks)
