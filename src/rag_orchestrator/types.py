"""Shared domain models.

Every structure here is immutable: each pipeline stage produces a new value
and never mutates what the previous stage handed it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _empty_mapping() -> Mapping[str, Any]:
    return _EMPTY


def freeze_mapping(values: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """Return a read-only, key-sorted copy of `values`."""
    if not values:
        return _EMPTY
    return MappingProxyType({key: values[key] for key in sorted(values)})


class Intent(str, Enum):
    DOCS_LOOKUP = "DOCS_LOOKUP"
    GITHUB_STATUS = "GITHUB_STATUS"
    SYNTHESIS = "SYNTHESIS"
    UNKNOWN = "UNKNOWN"


class RetrievalMode(str, Enum):
    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    HYBRID = "hybrid"
    METADATA_ONLY = "metadata_only"


class IndexKind(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    METADATA = "metadata"


class Modality(str, Enum):
    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    AUTHORITATIVE = "authoritative"


class ExecutionMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class OutcomeStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    TIMEOUT = "timeout"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class Query:
    """A raw user query as submitted by the caller."""

    text: str
    caller_id: str = "anonymous"
    hints: Mapping[str, Any] = field(default_factory=_empty_mapping)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hints", freeze_mapping(self.hints))


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    """Validated intent classification for one query."""

    intent: Intent
    sources: frozenset[str]
    retrieval_mode: RetrievalMode
    extracted_entities: Mapping[str, str] = field(default_factory=_empty_mapping)
    confidence: float = 0.0
    reason: str = ""
    query_text: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", frozenset(self.sources))
        object.__setattr__(
            self, "extracted_entities", freeze_mapping(self.extracted_entities)
        )


@dataclass(frozen=True, slots=True)
class SourcePlan:
    """One executable retrieval call against a single source index."""

    source: str
    index_kind: IndexKind
    top_k: int
    query_text: str
    entity_hints: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class RetrievalPlan:
    """Ordered set of source plans plus execution constraints."""

    source_plans: tuple[SourcePlan, ...]
    execution_mode: ExecutionMode
    deadline_seconds: float
    aggregate_top_k: int
    intent: Intent = Intent.UNKNOWN
    rule: str = ""

    @property
    def total_top_k(self) -> int:
        return sum(source_plan.top_k for source_plan in self.source_plans)

    @property
    def sources(self) -> frozenset[str]:
        return frozenset(source_plan.source for source_plan in self.source_plans)


@dataclass(frozen=True, slots=True)
class Chunk:
    """Read-only view of a chunk returned by an adapter."""

    chunk_id: str
    text: str
    source: str
    uri: str = ""
    last_modified: datetime | None = None
    author: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=_empty_mapping)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))


@dataclass(frozen=True, slots=True)
class RetrievalHit:
    """A scored reference to a chunk produced by one adapter call."""

    chunk: Chunk
    score: float
    modality: Modality
    source: str
    index_kind: IndexKind
    pointers: tuple[str, ...] = ()

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id


@dataclass(frozen=True, slots=True)
class SourceOutcome:
    """How one source plan ended inside the executor."""

    source_plan: SourcePlan
    status: OutcomeStatus
    hit_count: int = 0
    latency_ms: float = 0.0
    error: str | None = None

    @property
    def responded(self) -> bool:
        return self.status not in (OutcomeStatus.TIMEOUT, OutcomeStatus.FAILED)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Hits collected by the executor plus the outcome of every source plan."""

    hits: tuple[RetrievalHit, ...]
    outcomes: tuple[SourceOutcome, ...]

    @property
    def evidence_complete(self) -> bool:
        return all(outcome.responded for outcome in self.outcomes)


@dataclass(frozen=True, slots=True)
class AggregatedItem:
    """One ranked piece of evidence."""

    chunk: Chunk
    combined_score: float
    modalities_seen: frozenset[Modality]
    is_authoritative_override: bool = False
    superseded_by: str | None = None
    previous: Chunk | None = None

    @property
    def is_stale(self) -> bool:
        return self.superseded_by is not None


@dataclass(frozen=True, slots=True)
class AggregatedResult:
    """Ranked, deduplicated evidence handed to the downstream synthesizer."""

    items: tuple[AggregatedItem, ...]
    evidence_complete: bool
    missing_sources: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def chunk_ids(self) -> list[str]:
        return [item.chunk.chunk_id for item in self.items]
