"""Collaborator contracts for the retrieval backends."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from rag_orchestrator.types import Chunk, freeze_mapping


@dataclass(frozen=True, slots=True)
class AdapterRecord:
    """One row returned by a vector or lexical index."""

    chunk_id: str
    score: float
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_chunk(self, source: str) -> Chunk:
        return Chunk(
            chunk_id=self.chunk_id,
            text=self.text,
            source=source,
            uri=str(self.metadata.get("uri", "")),
            last_modified=parse_timestamp(self.metadata.get("last_modified")),
            author=_optional_str(self.metadata.get("author")),
            metadata=self.metadata,
        )


@dataclass(frozen=True, slots=True)
class AuthoritativeRecord:
    """Live record held by the metadata registry (e.g. an issue's state)."""

    entity_id: str
    source: str
    status: str
    title: str = ""
    uri: str = ""
    updated_at: datetime | None = None
    author: str | None = None
    pointers: tuple[str, ...] = ()
    chunk_id: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def record_chunk_id(self) -> str:
        return self.chunk_id or f"{self.source}:{self.entity_id}"

    def to_chunk(self) -> Chunk:
        title = self.title or self.entity_id
        return Chunk(
            chunk_id=self.record_chunk_id,
            text=f"{title} [status: {self.status}]",
            source=self.source,
            uri=self.uri,
            last_modified=self.updated_at,
            author=self.author,
            metadata=freeze_mapping(
                {**self.extra, "entity_id": self.entity_id, "status": self.status}
            ),
        )


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]:
        """Return a fixed-length query embedding."""


class VectorAdapter(Protocol):
    async def query(
        self, namespace: str, vector: Sequence[float], top_k: int
    ) -> list[AdapterRecord]:
        """Nearest neighbours of `vector` in `namespace`, best first."""


class LexicalAdapter(Protocol):
    async def query(
        self, index: str, tokens: Sequence[str], top_k: int
    ) -> list[AdapterRecord]:
        """Keyword matches for `tokens` in `index`, best first."""


class MetadataRegistry(Protocol):
    async def lookup(self, source: str, entity_id: str) -> AuthoritativeRecord | None:
        """Authoritative record for `entity_id`, or None when unknown."""


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)
