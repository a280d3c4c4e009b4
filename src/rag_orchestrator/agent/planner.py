"""Retrieval planner: routing decision -> executable retrieval plan.

The planner is a pure function of its inputs. Plan shapes live in
`PLAN_TABLE`, an ordered (intent, confidence band) -> template table, so the
full policy can be inspected and tested without reading branching code.

Templates:
- GITHUB_STATUS/high: one metadata lookup, top_k 1, executed sequentially.
- GITHUB_STATUS/low: metadata lookup followed by a small lexical net over the
  github source.
- DOCS_LOOKUP/high: one plan per source using the decision's retrieval mode.
- DOCS_LOOKUP/low: widened top_k and both vector and lexical per source.
- SYNTHESIS: vector + lexical per source, in parallel, with query expansion.
- UNKNOWN: SYNTHESIS over every known source at the conservative top_k.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from rag_orchestrator.config import PlannerConfig
from rag_orchestrator.errors import PlanningError
from rag_orchestrator.obs.logging import get_logger
from rag_orchestrator.types import (
    ExecutionMode,
    IndexKind,
    Intent,
    RetrievalMode,
    RetrievalPlan,
    RoutingDecision,
    SourcePlan,
)

logger = get_logger(__name__)


class ConfidenceBand(str, Enum):
    HIGH = "high"
    LOW = "low"


PlanBuilder = Callable[["_PlanContext"], RetrievalPlan]


@dataclass(frozen=True, slots=True)
class PlanRule:
    intent: Intent
    band: ConfidenceBand
    name: str
    build: PlanBuilder


@dataclass(frozen=True, slots=True)
class _PlanContext:
    decision: RoutingDecision
    config: PlannerConfig
    known_sources: tuple[str, ...]
    rule_name: str

    @property
    def query_text(self) -> str:
        return self.decision.query_text

    @property
    def entity_hints(self) -> tuple[tuple[str, str], ...]:
        return tuple(sorted(self.decision.extracted_entities.items()))

    def decision_sources(self) -> tuple[str, ...]:
        known = set(self.known_sources)
        return tuple(sorted(source for source in self.decision.sources if source in known))


_MODE_KINDS: dict[RetrievalMode, tuple[IndexKind, ...]] = {
    RetrievalMode.SEMANTIC: (IndexKind.VECTOR,),
    RetrievalMode.LEXICAL: (IndexKind.LEXICAL,),
    RetrievalMode.HYBRID: (IndexKind.VECTOR, IndexKind.LEXICAL),
    RetrievalMode.METADATA_ONLY: (IndexKind.VECTOR,),
}
_KIND_ORDER = (IndexKind.METADATA, IndexKind.VECTOR, IndexKind.LEXICAL)


def with_keyword_cues(text: str, entities: Mapping[str, str]) -> str:
    """Append entity values the text does not already mention."""
    lowered = text.lower()
    missing = [
        value
        for _, value in sorted(entities.items())
        if value and value.lower() not in lowered
    ]
    if not missing:
        return text
    return " ".join([text, *missing]).strip()


def with_semantic_expansion(text: str, entities: Mapping[str, str]) -> str:
    """Paraphrase-style expansion used for vector queries."""
    if not entities:
        return text
    cues = "; ".join(f"{kind}: {value}" for kind, value in sorted(entities.items()))
    return f"{text} ({cues})".strip()


def _lookup_entity(ctx: _PlanContext) -> str | None:
    entities = ctx.decision.extracted_entities
    for kind in ctx.config.lookup_entity_kinds:
        value = entities.get(kind)
        if value:
            return value
    return None


def _status_plans(ctx: _PlanContext, *, with_net: bool) -> RetrievalPlan:
    source = ctx.config.github_source
    if source not in ctx.known_sources:
        raise PlanningError(f"status source {source!r} is not a known source")

    plans = [
        SourcePlan(
            source=source,
            index_kind=IndexKind.METADATA,
            top_k=ctx.config.github_status_top_k,
            query_text=ctx.query_text,
            entity_hints=ctx.entity_hints,
        )
    ]
    if with_net:
        plans.append(
            SourcePlan(
                source=source,
                index_kind=IndexKind.LEXICAL,
                top_k=ctx.config.github_fallback_top_k,
                query_text=with_keyword_cues(ctx.query_text, ctx.decision.extracted_entities),
                entity_hints=ctx.entity_hints,
            )
        )
    return _finish(ctx, plans, ExecutionMode.SEQUENTIAL, aggregate_top_k=None)


def _status_fast_path(ctx: _PlanContext) -> RetrievalPlan:
    return _status_plans(ctx, with_net=False)


def _status_with_net(ctx: _PlanContext) -> RetrievalPlan:
    return _status_plans(ctx, with_net=True)


def _docs_top_k(ctx: _PlanContext, band: ConfidenceBand) -> int:
    base = ctx.config.docs_top_k
    if band is ConfidenceBand.HIGH:
        return base
    confidence = max(ctx.decision.confidence, ctx.config.confidence_floor)
    widened = math.ceil(base / confidence)
    return min(ctx.config.max_top_k, max(base, widened))


def _docs_plans(ctx: _PlanContext, band: ConfidenceBand) -> RetrievalPlan:
    sources = ctx.decision_sources()
    if not sources:
        raise PlanningError("DOCS_LOOKUP decision has no known sources")

    kinds = set(_MODE_KINDS[ctx.decision.retrieval_mode])
    if band is ConfidenceBand.LOW:
        kinds |= {IndexKind.VECTOR, IndexKind.LEXICAL}
    top_k = _docs_top_k(ctx, band)
    text = with_keyword_cues(ctx.query_text, ctx.decision.extracted_entities)

    plans = [
        SourcePlan(
            source=source,
            index_kind=kind,
            top_k=top_k,
            query_text=text,
            entity_hints=ctx.entity_hints,
        )
        for source in sources
        for kind in _KIND_ORDER
        if kind in kinds
    ]
    return _finish(ctx, plans, ExecutionMode.PARALLEL, aggregate_top_k=top_k)


def _docs_focused(ctx: _PlanContext) -> RetrievalPlan:
    return _docs_plans(ctx, ConfidenceBand.HIGH)


def _docs_broadened(ctx: _PlanContext) -> RetrievalPlan:
    return _docs_plans(ctx, ConfidenceBand.LOW)


def _hybrid_plans(
    ctx: _PlanContext,
    sources: Iterable[str],
    *,
    top_k: int,
    aggregate_top_k: int,
) -> RetrievalPlan:
    entities = ctx.decision.extracted_entities
    vector_text = with_semantic_expansion(ctx.query_text, entities)
    lexical_text = with_keyword_cues(ctx.query_text, entities)
    plans: list[SourcePlan] = []
    for source in sources:
        plans.append(
            SourcePlan(
                source=source,
                index_kind=IndexKind.VECTOR,
                top_k=top_k,
                query_text=vector_text,
                entity_hints=ctx.entity_hints,
            )
        )
        plans.append(
            SourcePlan(
                source=source,
                index_kind=IndexKind.LEXICAL,
                top_k=top_k,
                query_text=lexical_text,
                entity_hints=ctx.entity_hints,
            )
        )
    return _finish(ctx, plans, ExecutionMode.PARALLEL, aggregate_top_k=aggregate_top_k)


def _synthesis(ctx: _PlanContext) -> RetrievalPlan:
    sources = ctx.decision_sources() or ctx.known_sources
    return _hybrid_plans(
        ctx,
        sources,
        top_k=ctx.config.synthesis_top_k,
        aggregate_top_k=ctx.config.synthesis_aggregate_top_k,
    )


def _unknown(ctx: _PlanContext) -> RetrievalPlan:
    return _hybrid_plans(
        ctx,
        ctx.known_sources,
        top_k=ctx.config.unknown_top_k,
        aggregate_top_k=ctx.config.unknown_aggregate_top_k,
    )


def _finish(
    ctx: _PlanContext,
    plans: list[SourcePlan],
    mode: ExecutionMode,
    *,
    aggregate_top_k: int | None,
) -> RetrievalPlan:
    total = sum(plan.top_k for plan in plans)
    limit = total if aggregate_top_k is None else min(aggregate_top_k, total)
    intent = ctx.decision.intent if isinstance(ctx.decision.intent, Intent) else Intent.UNKNOWN
    return RetrievalPlan(
        source_plans=tuple(plans),
        execution_mode=mode,
        deadline_seconds=ctx.config.deadline_seconds,
        aggregate_top_k=limit,
        intent=intent,
        rule=ctx.rule_name,
    )


PLAN_TABLE: tuple[PlanRule, ...] = (
    PlanRule(Intent.GITHUB_STATUS, ConfidenceBand.HIGH, "status_fast_path", _status_fast_path),
    PlanRule(Intent.GITHUB_STATUS, ConfidenceBand.LOW, "status_with_lexical_net", _status_with_net),
    PlanRule(Intent.DOCS_LOOKUP, ConfidenceBand.HIGH, "docs_focused", _docs_focused),
    PlanRule(Intent.DOCS_LOOKUP, ConfidenceBand.LOW, "docs_broadened", _docs_broadened),
    PlanRule(Intent.SYNTHESIS, ConfidenceBand.HIGH, "synthesis", _synthesis),
    PlanRule(Intent.SYNTHESIS, ConfidenceBand.LOW, "synthesis", _synthesis),
    PlanRule(Intent.UNKNOWN, ConfidenceBand.HIGH, "unknown_conservative", _unknown),
    PlanRule(Intent.UNKNOWN, ConfidenceBand.LOW, "unknown_conservative", _unknown),
)


class RetrievalPlanner:
    """Maps a `RoutingDecision` to a `RetrievalPlan` via `PLAN_TABLE`."""

    def __init__(
        self,
        config: PlannerConfig | None = None,
        known_sources: Iterable[str] = ("docs", "github", "slack"),
        table: tuple[PlanRule, ...] = PLAN_TABLE,
    ) -> None:
        self.config = config or PlannerConfig()
        self.known_sources = tuple(sorted(set(known_sources)))
        self.table = table

    def band(self, decision: RoutingDecision) -> ConfidenceBand:
        if decision.confidence >= self.config.tau_high:
            return ConfidenceBand.HIGH
        return ConfidenceBand.LOW

    def select_rule(self, decision: RoutingDecision) -> PlanRule:
        band = self.band(decision)
        ctx = self._context(decision, "")
        if decision.intent is Intent.GITHUB_STATUS and _lookup_entity(ctx) is None:
            band = ConfidenceBand.LOW
        for rule in self.table:
            if rule.intent is decision.intent and rule.band is band:
                return rule
        raise PlanningError(f"no plan rule for intent={decision.intent!r} band={band.value}")

    def plan(self, decision: RoutingDecision) -> RetrievalPlan:
        try:
            rule = self.select_rule(decision)
            return rule.build(self._context(decision, rule.name))
        except PlanningError as exc:
            logger.warning("planning_fallback", error=str(exc))
            return self.broadest(decision)

    def broadest(self, decision: RoutingDecision) -> RetrievalPlan:
        """SYNTHESIS-equivalent plan over every known source."""
        ctx = self._context(decision, "planning_fallback")
        return _hybrid_plans(
            ctx,
            self.known_sources,
            top_k=self.config.synthesis_top_k,
            aggregate_top_k=self.config.synthesis_aggregate_top_k,
        )

    def _context(self, decision: RoutingDecision, rule_name: str) -> _PlanContext:
        return _PlanContext(
            decision=decision,
            config=self.config,
            known_sources=self.known_sources,
            rule_name=rule_name,
        )
