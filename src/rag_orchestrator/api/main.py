"""FastAPI entrypoint for ingest/route/plan/query/trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from rag_orchestrator.agent.classifier import IntentClassifier, LLMIntentClassifier
from rag_orchestrator.config import load_config
from rag_orchestrator.obs.logging import configure_logging
from rag_orchestrator.obs.tracing import TraceStore
from rag_orchestrator.pipeline import RetrievalOrchestrator
from rag_orchestrator.retrieval.adapters import AuthoritativeRecord
from rag_orchestrator.retrieval.embedder import HashingEmbedder
from rag_orchestrator.retrieval.memory import (
    InMemoryLexicalIndex,
    InMemoryMetadataRegistry,
    InMemoryVectorIndex,
    index_chunks,
)
from rag_orchestrator.types import (
    AggregatedItem,
    AggregatedResult,
    Chunk,
    Intent,
    Query,
    RetrievalMode,
    RetrievalPlan,
    RoutingDecision,
)


def _create_classifier(known_sources: list[str]) -> IntentClassifier | None:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)
    return LLMIntentClassifier(llm, known_sources)


class ChunkPayload(BaseModel):
    chunk_id: str = Field(min_length=1)
    text: str
    uri: str = ""
    last_modified: datetime | None = None
    author: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestChunksRequest(BaseModel):
    source: str = Field(min_length=1)
    chunks: list[ChunkPayload] = Field(min_length=1)


class RecordPayload(BaseModel):
    entity_id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    status: str
    title: str = ""
    uri: str = ""
    updated_at: datetime | None = None
    author: str | None = None
    pointers: list[str] = Field(default_factory=list)
    chunk_id: str | None = None


class IngestRecordsRequest(BaseModel):
    records: list[RecordPayload] = Field(min_length=1)


class QueryRequest(BaseModel):
    text: str = Field(min_length=1)
    caller_id: str = "anonymous"
    hints: dict[str, Any] = Field(default_factory=dict)


class PlanRequest(BaseModel):
    intent: Intent
    sources: list[str] = Field(default_factory=list)
    retrieval_mode: RetrievalMode = RetrievalMode.HYBRID
    extracted_entities: dict[str, str] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    query_text: str = ""


_config = load_config()
configure_logging(
    _config.logging.level,
    service_name=_config.logging.service_name,
    json_output=_config.logging.json_output,
)

_embedder = HashingEmbedder()
_vector_index = InMemoryVectorIndex()
_lexical_index = InMemoryLexicalIndex()
_registry = InMemoryMetadataRegistry()
_trace_store = TraceStore()
_classifier = _create_classifier(_config.router.known_sources)
_orchestrator = RetrievalOrchestrator.from_config(
    _config,
    embedder=_embedder,
    vector=_vector_index,
    lexical=_lexical_index,
    metadata=_registry,
    classifier=_classifier,
    trace_store=_trace_store,
)

app = FastAPI(title="RAG Retrieval Orchestrator", version="0.1.0")


def _chunk_payload(chunk: Chunk) -> dict[str, Any]:
    return {
        "chunk_id": chunk.chunk_id,
        "text": chunk.text,
        "source": chunk.source,
        "uri": chunk.uri,
        "last_modified": chunk.last_modified.isoformat() if chunk.last_modified else None,
        "author": chunk.author,
        "metadata": dict(chunk.metadata),
    }


def _item_payload(item: AggregatedItem) -> dict[str, Any]:
    return {
        "chunk": _chunk_payload(item.chunk),
        "combined_score": item.combined_score,
        "modalities_seen": sorted(modality.value for modality in item.modalities_seen),
        "is_authoritative_override": item.is_authoritative_override,
        "superseded_by": item.superseded_by,
        "previous": _chunk_payload(item.previous) if item.previous else None,
    }


def _result_payload(result: AggregatedResult) -> dict[str, Any]:
    return {
        "items": [_item_payload(item) for item in result.items],
        "evidence_complete": result.evidence_complete,
        "missing_sources": list(result.missing_sources),
    }


def _decision_payload(decision: RoutingDecision) -> dict[str, Any]:
    return {
        "intent": decision.intent.value,
        "sources": sorted(decision.sources),
        "retrieval_mode": decision.retrieval_mode.value,
        "extracted_entities": dict(decision.extracted_entities),
        "confidence": decision.confidence,
        "reason": decision.reason,
    }


def _plan_payload(plan: RetrievalPlan) -> dict[str, Any]:
    return {
        "rule": plan.rule,
        "intent": plan.intent.value,
        "execution_mode": plan.execution_mode.value,
        "deadline_seconds": plan.deadline_seconds,
        "aggregate_top_k": plan.aggregate_top_k,
        "source_plans": [
            {
                "source": source_plan.source,
                "index_kind": source_plan.index_kind.value,
                "top_k": source_plan.top_k,
                "query_text": source_plan.query_text,
                "entity_hints": dict(source_plan.entity_hints),
            }
            for source_plan in plan.source_plans
        ],
    }


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "classifier_configured": _classifier is not None,
        "known_sources": sorted(_config.router.known_sources),
        "trace_count": len(_trace_store),
    }


def _require_known_source(source: str) -> None:
    if source not in _config.router.known_sources:
        raise HTTPException(status_code=400, detail=f"unknown source: {source}")


@app.post("/ingest/chunks")
def ingest_chunks(request: IngestChunksRequest) -> dict[str, Any]:
    _require_known_source(request.source)
    chunks = [
        Chunk(
            chunk_id=payload.chunk_id,
            text=payload.text,
            source=request.source,
            uri=payload.uri,
            last_modified=payload.last_modified,
            author=payload.author,
            metadata=payload.metadata,
        )
        for payload in request.chunks
    ]
    indexed = index_chunks(_embedder, _vector_index, _lexical_index, request.source, chunks)
    return {
        "source": request.source,
        "chunks_indexed": indexed,
        "chunk_ids": [chunk.chunk_id for chunk in chunks],
    }


@app.post("/ingest/records")
def ingest_records(request: IngestRecordsRequest) -> dict[str, Any]:
    for payload in request.records:
        _require_known_source(payload.source)
    for payload in request.records:
        _registry.put(
            AuthoritativeRecord(
                entity_id=payload.entity_id,
                source=payload.source,
                status=payload.status,
                title=payload.title,
                uri=payload.uri,
                updated_at=payload.updated_at,
                author=payload.author,
                pointers=tuple(payload.pointers),
                chunk_id=payload.chunk_id,
            )
        )
    return {"records_loaded": len(request.records)}


@app.post("/route")
async def route(request: QueryRequest) -> dict[str, Any]:
    decision = await _orchestrator.router.route(
        Query(text=request.text, caller_id=request.caller_id, hints=request.hints)
    )
    return _decision_payload(decision)


@app.post("/plan")
def plan(request: PlanRequest) -> dict[str, Any]:
    decision = RoutingDecision(
        intent=request.intent,
        sources=frozenset(request.sources),
        retrieval_mode=request.retrieval_mode,
        extracted_entities=request.extracted_entities,
        confidence=request.confidence,
        reason="api",
        query_text=request.query_text,
    )
    return _plan_payload(_orchestrator.planner.plan(decision))


@app.post("/query")
async def query(request: QueryRequest) -> dict[str, Any]:
    try:
        run = await _orchestrator.run(
            Query(text=request.text, caller_id=request.caller_id, hints=request.hints)
        )
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "trace_id": run.trace_id,
        "decision": _decision_payload(run.decision),
        "plan_rule": run.plan.rule,
        **_result_payload(run.result),
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
