"""End-to-end query pipeline: route -> plan -> execute -> aggregate."""

from __future__ import annotations

from dataclasses import dataclass

from rag_orchestrator.agent.classifier import IntentClassifier
from rag_orchestrator.agent.planner import RetrievalPlanner
from rag_orchestrator.agent.router import IntentRouter
from rag_orchestrator.config import OrchestratorConfig
from rag_orchestrator.obs.logging import get_logger, set_trace_id
from rag_orchestrator.obs.tracing import StageTimings, Timer, TraceStore
from rag_orchestrator.retrieval.adapters import (
    EmbeddingService,
    LexicalAdapter,
    MetadataRegistry,
    VectorAdapter,
)
from rag_orchestrator.retrieval.aggregator import ResultAggregator
from rag_orchestrator.retrieval.executor import RetrievalExecutor
from rag_orchestrator.types import (
    AggregatedResult,
    ExecutionResult,
    Query,
    RetrievalPlan,
    RoutingDecision,
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """Every intermediate product of one query, for callers that need them."""

    trace_id: str
    decision: RoutingDecision
    plan: RetrievalPlan
    execution: ExecutionResult
    result: AggregatedResult


class RetrievalOrchestrator:
    """Wires router, planner, executor and aggregator together.

    Data flows strictly downstream; each stage returns a new immutable value.
    A slow or broken backend degrades `evidence_complete` but never fails
    the request.
    """

    def __init__(
        self,
        *,
        router: IntentRouter,
        planner: RetrievalPlanner,
        executor: RetrievalExecutor,
        aggregator: ResultAggregator,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.router = router
        self.planner = planner
        self.executor = executor
        self.aggregator = aggregator
        self.trace_store = trace_store if trace_store is not None else TraceStore()

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        *,
        embedder: EmbeddingService,
        vector: VectorAdapter,
        lexical: LexicalAdapter,
        metadata: MetadataRegistry,
        classifier: IntentClassifier | None = None,
        trace_store: TraceStore | None = None,
    ) -> "RetrievalOrchestrator":
        return cls(
            router=IntentRouter(classifier, config.router),
            planner=RetrievalPlanner(config.planner, config.router.known_sources),
            executor=RetrievalExecutor(
                embedder=embedder,
                vector=vector,
                lexical=lexical,
                metadata=metadata,
                config=config.executor,
            ),
            aggregator=ResultAggregator(config.aggregator),
            trace_store=trace_store,
        )

    async def submit(self, query: Query) -> AggregatedResult:
        run = await self.run(query)
        return run.result

    async def run(self, query: Query) -> PipelineRun:
        trace_id = self.trace_store.new_trace_id()
        set_trace_id(trace_id)
        stages = StageTimings()
        try:
            with Timer() as total:
                with Timer() as timer:
                    decision = await self.router.route(query)
                stages.route_ms = timer.elapsed_ms

                with Timer() as timer:
                    plan = self.planner.plan(decision)
                stages.plan_ms = timer.elapsed_ms

                with Timer() as timer:
                    execution = await self.executor.execute(plan)
                stages.execute_ms = timer.elapsed_ms

                with Timer() as timer:
                    result = self.aggregator.aggregate(
                        execution.hits, plan, execution.outcomes
                    )
                stages.aggregate_ms = timer.elapsed_ms

            self.trace_store.create_record(
                trace_id=trace_id,
                query=query.text,
                caller_id=query.caller_id,
                intent=decision.intent.value,
                confidence=decision.confidence,
                route_reason=decision.reason,
                plan_rule=plan.rule,
                sources=sorted(plan.sources),
                source_outcomes=[
                    {
                        "source": outcome.source_plan.source,
                        "index_kind": outcome.source_plan.index_kind.value,
                        "status": outcome.status.value,
                        "hit_count": outcome.hit_count,
                        "latency_ms": outcome.latency_ms,
                        "error": outcome.error,
                    }
                    for outcome in execution.outcomes
                ],
                result_size=len(result),
                evidence_complete=result.evidence_complete,
                latency_ms=total.elapsed_ms,
                stages=stages,
            )
            logger.info(
                "query_completed",
                caller_id=query.caller_id,
                intent=decision.intent.value,
                plan_rule=plan.rule,
                results=len(result),
                evidence_complete=result.evidence_complete,
                latency_ms=round(total.elapsed_ms, 2),
            )
            return PipelineRun(
                trace_id=trace_id,
                decision=decision,
                plan=plan,
                execution=execution,
                result=result,
            )
        finally:
            set_trace_id(None)
