"""Merges executor hits into one ranked, deduplicated evidence set."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rag_orchestrator.config import AggregatorConfig
from rag_orchestrator.errors import IdentityMismatchWarning
from rag_orchestrator.obs.logging import get_logger
from rag_orchestrator.types import (
    AggregatedItem,
    AggregatedResult,
    Chunk,
    Modality,
    RetrievalHit,
    RetrievalPlan,
    SourceOutcome,
)

logger = get_logger(__name__)

_MODALITY_ORDER = (Modality.AUTHORITATIVE, Modality.SEMANTIC, Modality.LEXICAL)
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class _Group:
    """Working state for one chunk id while aggregating."""

    chunk_id: str
    chunk: Chunk
    best: dict[Modality, float] = field(default_factory=dict)
    previous: Chunk | None = None
    pointers: frozenset[str] = frozenset()

    @property
    def authoritative(self) -> bool:
        return Modality.AUTHORITATIVE in self.best


def _timestamp(chunk: Chunk) -> float:
    value = chunk.last_modified
    if value is None:
        return _OLDEST.timestamp()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _variant_key(hit: RetrievalHit) -> tuple[bool, float, str, str, str, str, str]:
    chunk = hit.chunk
    return (
        hit.modality is Modality.AUTHORITATIVE,
        _timestamp(chunk),
        chunk.text,
        chunk.source,
        chunk.uri,
        chunk.author or "",
        repr(sorted(chunk.metadata.items(), key=lambda item: item[0])),
    )


def find_identity_mismatches(hits: Iterable[RetrievalHit]) -> dict[str, list[str]]:
    """Chunk ids whose hits disagree on text, mapped to the distinct texts."""
    texts: dict[str, set[str]] = {}
    for hit in hits:
        if hit.modality is Modality.AUTHORITATIVE:
            continue
        texts.setdefault(hit.chunk_id, set()).add(hit.chunk.text)
    return {
        chunk_id: sorted(variants)
        for chunk_id, variants in sorted(texts.items())
        if len(variants) > 1
    }


class ResultAggregator:
    """Deterministic merge of hits into an `AggregatedResult`.

    Process:
    1. Optionally min-max normalize scores per (source, modality).
    2. Group by chunk id; combined score is the weighted sum of the best
       score seen per modality, rewarding chunks found by both modalities.
    3. Authoritative hits replace chunk content sharing their id (kept as
       `previous`) and mark chunks they point to as superseded. An
       authoritative item never scores below what it supersedes.
    4. Cluster scores that sit within the freshness epsilon of their
       neighbour. Clusters rank by top score; inside one, authority wins,
       then recency, exact score and chunk id. Truncate to the plan's
       aggregate top-k.

    The result depends only on the multiset of hits, never on arrival order.
    """

    def __init__(self, config: AggregatorConfig | None = None) -> None:
        self.config = config or AggregatorConfig()

    @property
    def weights(self) -> dict[Modality, float]:
        return {
            Modality.SEMANTIC: self.config.semantic_weight,
            Modality.LEXICAL: self.config.lexical_weight,
            Modality.AUTHORITATIVE: self.config.authoritative_weight,
        }

    def aggregate(
        self,
        hits: Sequence[RetrievalHit],
        plan: RetrievalPlan,
        outcomes: Sequence[SourceOutcome] = (),
    ) -> AggregatedResult:
        evidence_complete = all(outcome.responded for outcome in outcomes)
        missing = tuple(
            sorted(
                {
                    f"{outcome.source_plan.source}/{outcome.source_plan.index_kind.value}"
                    for outcome in outcomes
                    if not outcome.responded
                }
            )
        )
        if not hits:
            return AggregatedResult(
                items=(), evidence_complete=evidence_complete, missing_sources=missing
            )

        if self.config.normalize_scores:
            pairs = self._normalize(hits)
        else:
            pairs = [(hit, hit.score) for hit in hits]
        groups = self._group(pairs)
        items = self._score(groups)
        ranked = self._rank(items)
        limited = tuple(ranked[: max(0, plan.aggregate_top_k)])

        logger.info(
            "aggregation_completed",
            hits=len(hits),
            unique_chunks=len(groups),
            returned=len(limited),
            authoritative=sum(1 for item in limited if item.is_authoritative_override),
            evidence_complete=evidence_complete,
        )
        return AggregatedResult(
            items=limited, evidence_complete=evidence_complete, missing_sources=missing
        )

    def _normalize(self, hits: Sequence[RetrievalHit]) -> list[tuple[RetrievalHit, float]]:
        buckets: dict[tuple[str, Modality], list[float]] = {}
        for hit in hits:
            buckets.setdefault((hit.source, hit.modality), []).append(hit.score)
        bounds = {key: (min(values), max(values)) for key, values in buckets.items()}

        normalized: list[tuple[RetrievalHit, float]] = []
        for hit in hits:
            if hit.modality is Modality.AUTHORITATIVE:
                normalized.append((hit, hit.score))
                continue
            low, high = bounds[(hit.source, hit.modality)]
            score = 1.0 if high == low else (hit.score - low) / (high - low)
            normalized.append((hit, score))
        return normalized

    def _group(self, pairs: Sequence[tuple[RetrievalHit, float]]) -> dict[str, _Group]:
        by_id: dict[str, list[tuple[RetrievalHit, float]]] = {}
        for hit, score in pairs:
            by_id.setdefault(hit.chunk_id, []).append((hit, score))

        for chunk_id, variants in find_identity_mismatches(hit for hit, _ in pairs).items():
            logger.warning(
                "chunk_identity_mismatch",
                chunk_id=chunk_id,
                variants=len(variants),
                category=IdentityMismatchWarning.__name__,
            )

        groups: dict[str, _Group] = {}
        for chunk_id in sorted(by_id):
            members = by_id[chunk_id]
            representative = max((hit for hit, _ in members), key=_variant_key)
            group = _Group(chunk_id=chunk_id, chunk=representative.chunk)
            for hit, score in members:
                current = group.best.get(hit.modality)
                if current is None or score > current:
                    group.best[hit.modality] = score
                if hit.modality is Modality.AUTHORITATIVE:
                    group.pointers = group.pointers | frozenset(hit.pointers)
            if group.authoritative:
                stale = [hit for hit, _ in members if hit.modality is not Modality.AUTHORITATIVE]
                if stale:
                    group.previous = max(stale, key=_variant_key).chunk
            groups[chunk_id] = group
        return groups

    def _combined(self, group: _Group) -> float:
        weights = self.weights
        return sum(
            weights[modality] * group.best[modality]
            for modality in _MODALITY_ORDER
            if modality in group.best
        )

    def _score(self, groups: dict[str, _Group]) -> list[AggregatedItem]:
        base = {chunk_id: self._combined(group) for chunk_id, group in groups.items()}

        # every authority pointing at a chunk outranks it; the lowest id names it
        superseded_by: dict[str, str] = {}
        lifted = dict(base)
        for chunk_id in sorted(groups):
            group = groups[chunk_id]
            if not group.authoritative:
                continue
            for pointer in sorted(group.pointers):
                target = groups.get(pointer)
                if target is None or target.authoritative:
                    continue
                superseded_by.setdefault(pointer, chunk_id)
                lifted[chunk_id] = max(lifted[chunk_id], base[pointer])

        items: list[AggregatedItem] = []
        for chunk_id, group in groups.items():
            items.append(
                AggregatedItem(
                    chunk=group.chunk,
                    combined_score=lifted[chunk_id],
                    modalities_seen=frozenset(group.best),
                    is_authoritative_override=group.authoritative,
                    superseded_by=superseded_by.get(chunk_id),
                    previous=group.previous,
                )
            )
        return items

    def _rank(self, items: Sequence[AggregatedItem]) -> list[AggregatedItem]:
        """Order items by score cluster, then authority, recency, score and id.

        Walking scores downwards, a gap wider than the freshness epsilon
        between neighbours starts a new cluster, so clusters come out
        ordered by their top score.
        """
        epsilon = max(0.0, self.config.freshness_epsilon)
        by_score = sorted(items, key=lambda item: (-item.combined_score, item.chunk.chunk_id))

        clusters: list[list[AggregatedItem]] = []
        previous: float | None = None
        for item in by_score:
            if previous is None or previous - item.combined_score > epsilon:
                clusters.append([])
            clusters[-1].append(item)
            previous = item.combined_score

        ranked: list[AggregatedItem] = []
        for cluster in clusters:
            ranked.extend(sorted(cluster, key=_within_cluster_key))
        return ranked


def _within_cluster_key(item: AggregatedItem) -> tuple[bool, float, float, str]:
    return (
        not item.is_authoritative_override,
        -_timestamp(item.chunk),
        -item.combined_score,
        item.chunk.chunk_id,
    )
