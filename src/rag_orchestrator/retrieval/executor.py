"""Executes a retrieval plan against the adapters within its deadline.

Each source plan runs as an isolated task that returns its own hits and
outcome; results are joined in plan order once every task has finished or
the deadline has elapsed, so no state is shared between tasks. Adapter calls
are never retried here.
"""

from __future__ import annotations

import asyncio
from time import perf_counter

from rag_orchestrator.config import ExecutorConfig
from rag_orchestrator.errors import SourceUnavailableError
from rag_orchestrator.obs.logging import get_logger
from rag_orchestrator.retrieval.adapters import (
    EmbeddingService,
    LexicalAdapter,
    MetadataRegistry,
    VectorAdapter,
)
from rag_orchestrator.retrieval.lexical import tokenize
from rag_orchestrator.types import (
    ExecutionMode,
    ExecutionResult,
    IndexKind,
    Modality,
    OutcomeStatus,
    RetrievalHit,
    RetrievalPlan,
    SourceOutcome,
    SourcePlan,
)

logger = get_logger(__name__)

_TaskResult = tuple[tuple[RetrievalHit, ...], SourceOutcome]


class RetrievalExecutor:
    """Dispatches source plans to the vector, lexical and metadata adapters."""

    def __init__(
        self,
        *,
        embedder: EmbeddingService,
        vector: VectorAdapter,
        lexical: LexicalAdapter,
        metadata: MetadataRegistry,
        config: ExecutorConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.vector = vector
        self.lexical = lexical
        self.metadata = metadata
        self.config = config or ExecutorConfig()

    async def execute(self, plan: RetrievalPlan) -> ExecutionResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + plan.deadline_seconds

        if plan.execution_mode is ExecutionMode.SEQUENTIAL:
            results = await self._execute_sequential(plan, deadline)
        else:
            results = await self._execute_parallel(plan, deadline)

        hits = tuple(hit for task_hits, _ in results for hit in task_hits)
        outcomes = tuple(outcome for _, outcome in results)
        result = ExecutionResult(hits=hits, outcomes=outcomes)
        logger.info(
            "execution_completed",
            mode=plan.execution_mode.value,
            source_plans=len(plan.source_plans),
            hits=len(hits),
            evidence_complete=result.evidence_complete,
            statuses=[outcome.status.value for outcome in outcomes],
        )
        return result

    async def _execute_parallel(
        self, plan: RetrievalPlan, deadline: float
    ) -> list[_TaskResult]:
        if not plan.source_plans:
            return []
        loop = asyncio.get_running_loop()
        tasks = [
            asyncio.create_task(
                self._run(source_plan, deadline),
                name=f"retrieve:{source_plan.source}:{source_plan.index_kind.value}",
            )
            for source_plan in plan.source_plans
        ]
        done, pending = await asyncio.wait(tasks, timeout=max(0.0, deadline - loop.time()))
        for task in pending:
            task.cancel()

        results: list[_TaskResult] = []
        for source_plan, task in zip(plan.source_plans, tasks, strict=True):
            if task in done and not task.cancelled():
                results.append(task.result())
                continue
            logger.warning(
                "source_deadline_exceeded",
                source=source_plan.source,
                index_kind=source_plan.index_kind.value,
            )
            results.append(
                (
                    (),
                    SourceOutcome(
                        source_plan=source_plan,
                        status=OutcomeStatus.TIMEOUT,
                        latency_ms=plan.deadline_seconds * 1000.0,
                        error="query deadline exceeded",
                    ),
                )
            )
        return results

    async def _execute_sequential(
        self, plan: RetrievalPlan, deadline: float
    ) -> list[_TaskResult]:
        results: list[_TaskResult] = []
        answered = False
        for source_plan in plan.source_plans:
            if answered:
                results.append(
                    ((), SourceOutcome(source_plan=source_plan, status=OutcomeStatus.SKIPPED))
                )
                continue
            task_hits, outcome = await self._run(source_plan, deadline)
            results.append((task_hits, outcome))
            if source_plan.index_kind is IndexKind.METADATA and any(
                hit.modality is Modality.AUTHORITATIVE for hit in task_hits
            ):
                answered = True
                logger.info("status_fast_path_answered", source=source_plan.source)
        return results

    async def _run(self, source_plan: SourcePlan, deadline: float) -> _TaskResult:
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            return (), SourceOutcome(
                source_plan=source_plan,
                status=OutcomeStatus.TIMEOUT,
                error="query deadline exceeded before dispatch",
            )

        timeout = min(self.config.per_source_timeout_seconds, remaining)
        start = perf_counter()
        try:
            hits = await asyncio.wait_for(self._dispatch(source_plan), timeout=timeout)
        except asyncio.TimeoutError:
            latency_ms = (perf_counter() - start) * 1000.0
            logger.warning(
                "source_timeout",
                source=source_plan.source,
                index_kind=source_plan.index_kind.value,
                timeout_seconds=timeout,
            )
            return (), SourceOutcome(
                source_plan=source_plan,
                status=OutcomeStatus.TIMEOUT,
                latency_ms=latency_ms,
                error=f"timed out after {timeout:.3f}s",
            )
        except Exception as exc:
            latency_ms = (perf_counter() - start) * 1000.0
            error = SourceUnavailableError(
                source_plan.source, source_plan.index_kind.value, str(exc)
            )
            logger.warning(
                "source_unavailable",
                source=source_plan.source,
                index_kind=source_plan.index_kind.value,
                error=str(error),
                error_type=type(exc).__name__,
            )
            return (), SourceOutcome(
                source_plan=source_plan,
                status=OutcomeStatus.FAILED,
                latency_ms=latency_ms,
                error=str(error),
            )

        latency_ms = (perf_counter() - start) * 1000.0
        status = OutcomeStatus.OK if hits else OutcomeStatus.EMPTY
        return hits, SourceOutcome(
            source_plan=source_plan,
            status=status,
            hit_count=len(hits),
            latency_ms=latency_ms,
        )

    async def _dispatch(self, source_plan: SourcePlan) -> tuple[RetrievalHit, ...]:
        if source_plan.index_kind is IndexKind.VECTOR:
            return await self._query_vector(source_plan)
        if source_plan.index_kind is IndexKind.LEXICAL:
            return await self._query_lexical(source_plan)
        if source_plan.index_kind is IndexKind.METADATA:
            return await self._query_metadata(source_plan)
        raise ValueError(f"Unsupported index kind: {source_plan.index_kind!r}")

    async def _query_vector(self, source_plan: SourcePlan) -> tuple[RetrievalHit, ...]:
        embedding = await self.embedder.embed(source_plan.query_text)
        records = await self.vector.query(source_plan.source, embedding, source_plan.top_k)
        return tuple(
            RetrievalHit(
                chunk=record.to_chunk(source_plan.source),
                score=float(record.score),
                modality=Modality.SEMANTIC,
                source=source_plan.source,
                index_kind=IndexKind.VECTOR,
            )
            for record in records[: source_plan.top_k]
        )

    async def _query_lexical(self, source_plan: SourcePlan) -> tuple[RetrievalHit, ...]:
        tokens = tokenize(source_plan.query_text)
        if not tokens:
            return ()
        records = await self.lexical.query(source_plan.source, tokens, source_plan.top_k)
        return tuple(
            RetrievalHit(
                chunk=record.to_chunk(source_plan.source),
                score=float(record.score),
                modality=Modality.LEXICAL,
                source=source_plan.source,
                index_kind=IndexKind.LEXICAL,
            )
            for record in records[: source_plan.top_k]
        )

    async def _query_metadata(self, source_plan: SourcePlan) -> tuple[RetrievalHit, ...]:
        entity_id = self._lookup_entity(source_plan)
        if entity_id is None:
            logger.info("metadata_lookup_skipped", source=source_plan.source, reason="no_entity")
            return ()
        record = await self.metadata.lookup(source_plan.source, entity_id)
        if record is None:
            return ()
        return (
            RetrievalHit(
                chunk=record.to_chunk(),
                score=1.0,
                modality=Modality.AUTHORITATIVE,
                source=source_plan.source,
                index_kind=IndexKind.METADATA,
                pointers=tuple(record.pointers),
            ),
        )

    def _lookup_entity(self, source_plan: SourcePlan) -> str | None:
        hints = dict(source_plan.entity_hints)
        for kind in self.config.lookup_entity_kinds:
            value = hints.get(kind)
            if value:
                return value
        return None
