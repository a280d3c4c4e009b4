"""Behavioural guarantees that hold for every input, not just curated cases."""

from itertools import permutations

import pytest

from rag_orchestrator.agent.planner import RetrievalPlanner
from rag_orchestrator.config import ExecutorConfig
from rag_orchestrator.retrieval.aggregator import ResultAggregator
from rag_orchestrator.retrieval.executor import RetrievalExecutor
from rag_orchestrator.types import (
    Chunk,
    ExecutionMode,
    IndexKind,
    Intent,
    Modality,
    OutcomeStatus,
    RetrievalHit,
    RetrievalMode,
    RetrievalPlan,
    RoutingDecision,
    SourcePlan,
)

CONFIDENCES = [0.0, 0.1, 0.25, 0.5, 0.79, 0.8, 0.95, 1.0]
MODES = list(RetrievalMode)


def _decision(intent: Intent, mode: RetrievalMode, confidence: float) -> RoutingDecision:
    return RoutingDecision(
        intent=intent,
        sources=frozenset({"docs", "github"}),
        retrieval_mode=mode,
        extracted_entities={"issue_number": "482"},
        confidence=confidence,
        query_text="why is login failing for issue 482",
    )


def _hit(chunk_id: str, score: float, modality: Modality, source: str = "docs") -> RetrievalHit:
    kind = {
        Modality.SEMANTIC: IndexKind.VECTOR,
        Modality.LEXICAL: IndexKind.LEXICAL,
        Modality.AUTHORITATIVE: IndexKind.METADATA,
    }[modality]
    return RetrievalHit(
        chunk=Chunk(chunk_id, f"body {chunk_id}", source),
        score=score,
        modality=modality,
        source=source,
        index_kind=kind,
    )


def _plan(aggregate_top_k: int) -> RetrievalPlan:
    return RetrievalPlan(
        source_plans=(SourcePlan("docs", IndexKind.VECTOR, 10, "q"),),
        execution_mode=ExecutionMode.PARALLEL,
        deadline_seconds=1.0,
        aggregate_top_k=aggregate_top_k,
    )


HITS = [
    _hit("a", 0.81, Modality.SEMANTIC),
    _hit("a", 0.40, Modality.LEXICAL),
    _hit("b", 0.90, Modality.SEMANTIC),
    _hit("c", 0.55, Modality.LEXICAL, source="github"),
    _hit("d", 0.90, Modality.SEMANTIC, source="slack"),
    _hit("b", 0.20, Modality.SEMANTIC),
]


@pytest.mark.parametrize("intent", list(Intent))
@pytest.mark.parametrize("mode", MODES)
def test_planning_is_deterministic(intent: Intent, mode: RetrievalMode) -> None:
    planner = RetrievalPlanner()
    for confidence in CONFIDENCES:
        decision = _decision(intent, mode, confidence)
        assert planner.plan(decision) == RetrievalPlanner().plan(decision)


@pytest.mark.parametrize("intent", list(Intent))
@pytest.mark.parametrize("mode", MODES)
def test_lower_confidence_never_narrows_the_plan(intent: Intent, mode: RetrievalMode) -> None:
    planner = RetrievalPlanner()
    ordered = sorted(CONFIDENCES)
    for low, high in zip(ordered, ordered[1:]):
        low_plan = planner.plan(_decision(intent, mode, low))
        high_plan = planner.plan(_decision(intent, mode, high))
        low_keys = {(p.source, p.index_kind) for p in low_plan.source_plans}
        high_keys = {(p.source, p.index_kind) for p in high_plan.source_plans}
        assert high_keys <= low_keys
        assert low_plan.total_top_k >= high_plan.total_top_k


def test_aggregation_ignores_hit_arrival_order() -> None:
    aggregator = ResultAggregator()
    expected = aggregator.aggregate(HITS, _plan(10))

    for ordering in permutations(HITS):
        assert aggregator.aggregate(list(ordering), _plan(10)) == expected


@pytest.mark.parametrize("limit", [0, 1, 2, 3, 4, 10])
def test_aggregation_output_is_bounded(limit: int) -> None:
    result = ResultAggregator().aggregate(HITS, _plan(limit))

    assert len(result) == min(limit, len({hit.chunk_id for hit in HITS}))
    assert len(set(result.chunk_ids)) == len(result)


@pytest.mark.parametrize("stale_score", [0.1, 0.5, 0.99, 1.5, 3.0])
def test_authority_always_outranks_what_it_supersedes(stale_score: float) -> None:
    stale = _hit("thread", stale_score, Modality.LEXICAL, source="github")
    authorities = [
        RetrievalHit(
            chunk=Chunk(entity_id, "[status: closed]", "github"),
            score=0.01,
            modality=Modality.AUTHORITATIVE,
            source="github",
            index_kind=IndexKind.METADATA,
            pointers=("thread",),
        )
        for entity_id in ("github:1", "github:2")
    ]

    for hits in permutations([stale, *authorities]):
        result = ResultAggregator().aggregate(list(hits), _plan(5))
        position = result.chunk_ids.index
        assert position("github:1") < position("thread")
        assert position("github:2") < position("thread")
        stale_item = result.items[position("thread")]
        assert stale_item.superseded_by == "github:1"


@pytest.mark.asyncio
@pytest.mark.parametrize("broken", ["docs", "github", "slack"])
async def test_one_unavailable_source_never_fails_the_query(stores, broken: str) -> None:
    stores.vector.failing.add(broken)
    stores.lexical.delays[broken] = 1.0
    executor = RetrievalExecutor(
        **stores.adapters(), config=ExecutorConfig(per_source_timeout_seconds=0.05)
    )
    decision = RoutingDecision(
        intent=Intent.SYNTHESIS,
        sources=frozenset({"docs", "github", "slack"}),
        retrieval_mode=RetrievalMode.HYBRID,
        confidence=0.4,
        query_text="login token expiry",
    )
    plan = RetrievalPlanner().plan(decision)

    execution = await executor.execute(plan)
    result = ResultAggregator().aggregate(execution.hits, plan, execution.outcomes)

    assert not result.evidence_complete
    assert result.items
    assert broken not in {item.chunk.source for item in result.items}
    failed = {o.source_plan.source for o in execution.outcomes if not o.responded}
    assert failed == {broken}
    assert {o.status for o in execution.outcomes if not o.responded} == {
        OutcomeStatus.FAILED,
        OutcomeStatus.TIMEOUT,
    }
