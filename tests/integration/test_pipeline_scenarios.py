import pytest

from rag_orchestrator.config import ExecutorConfig, OrchestratorConfig
from rag_orchestrator.pipeline import RetrievalOrchestrator
from rag_orchestrator.types import Intent, Modality, Query


def _orchestrator(stores, classifier=None) -> RetrievalOrchestrator:
    config = OrchestratorConfig(executor=ExecutorConfig(per_source_timeout_seconds=0.1))
    return RetrievalOrchestrator.from_config(config, classifier=classifier, **stores.adapters())


DOCS_QUESTION = "What is the signature of getUserProfile?"
SYNTHESIS_QUESTION = "Summarize the login failures discussed across docs, issues and chat."
REFRESH_QUESTION = "how do I refresh authentication tokens"

RESPONSES = {
    DOCS_QUESTION: {
        "intent": "DOCS_LOOKUP",
        "sources": ["docs"],
        "retrieval_mode": "semantic",
        "extracted_entities": {"function_name": "getUserProfile"},
        "confidence": 0.92,
    },
    SYNTHESIS_QUESTION: {
        "intent": "SYNTHESIS",
        "sources": ["docs", "github", "slack"],
        "retrieval_mode": "hybrid",
        "extracted_entities": {"topic": "login failures"},
        "confidence": 0.4,
    },
    REFRESH_QUESTION: {
        "intent": "DOCS_LOOKUP",
        "sources": ["docs"],
        "retrieval_mode": "semantic",
        "extracted_entities": {},
        "confidence": 0.5,
    },
}


@pytest.mark.asyncio
async def test_confident_docs_lookup(stores, classifier_factory) -> None:
    orchestrator = _orchestrator(stores, classifier_factory(RESPONSES))

    run = await orchestrator.run(Query(DOCS_QUESTION, caller_id="ide-plugin"))

    assert run.decision.intent is Intent.DOCS_LOOKUP
    assert run.plan.rule == "docs_focused"
    assert run.result.items[0].chunk.chunk_id == "docs-get-user-profile"
    assert {item.chunk.source for item in run.result.items} == {"docs"}
    assert run.result.evidence_complete
    assert stores.lexical.calls == []
    assert stores.registry.calls == []


@pytest.mark.asyncio
async def test_status_fast_path_uses_registry_only(stores, classifier_factory) -> None:
    classifier = classifier_factory(RESPONSES)
    orchestrator = _orchestrator(stores, classifier)

    run = await orchestrator.run(Query("What's the status of issue #482?"))

    assert run.decision.reason == "rule:issue_status"
    assert run.plan.rule == "status_fast_path"
    (item,) = run.result.items
    assert item.is_authoritative_override
    assert "closed" in item.chunk.text
    assert classifier.calls == []
    assert stores.embedder.calls == []
    assert stores.vector.calls == []
    assert stores.lexical.calls == []
    assert stores.registry.calls == ["github"]

    trace = orchestrator.trace_store.get(run.trace_id)
    assert trace.route_reason == "rule:issue_status"
    assert trace.result_size == 1


@pytest.mark.asyncio
async def test_synthesis_tolerates_a_slow_source(stores, classifier_factory) -> None:
    stores.vector.delays["slack"] = 1.0
    stores.lexical.delays["slack"] = 1.0
    orchestrator = _orchestrator(stores, classifier_factory(RESPONSES))

    run = await orchestrator.run(Query(SYNTHESIS_QUESTION))

    assert run.plan.rule == "synthesis"
    assert not run.result.evidence_complete
    assert run.result.missing_sources == ("slack/lexical", "slack/vector")
    assert run.result.items
    assert {item.chunk.source for item in run.result.items} <= {"docs", "github"}

    statuses = {
        (outcome["source"], outcome["status"])
        for outcome in orchestrator.trace_store.get(run.trace_id).source_outcomes
    }
    assert ("slack", "timeout") in statuses
    assert ("docs", "ok") in statuses


@pytest.mark.asyncio
async def test_low_confidence_docs_lookup_rewards_dual_modality(
    stores, classifier_factory
) -> None:
    orchestrator = _orchestrator(stores, classifier_factory(RESPONSES))

    run = await orchestrator.run(Query(REFRESH_QUESTION))

    assert run.plan.rule == "docs_broadened"
    top = run.result.items[0]
    assert top.chunk.chunk_id == "docs-token-refresh"
    assert top.modalities_seen == frozenset({Modality.SEMANTIC, Modality.LEXICAL})


@pytest.mark.asyncio
async def test_classifier_outage_still_answers_conservatively(
    stores, classifier_factory
) -> None:
    classifier = classifier_factory(error=RuntimeError("upstream 503"))
    orchestrator = _orchestrator(stores, classifier)

    run = await orchestrator.run(Query("Why do logins fail after an hour?"))

    assert run.decision.intent is Intent.UNKNOWN
    assert run.decision.reason == "fallback:classifier_error"
    assert run.plan.rule == "unknown_conservative"
    assert run.plan.sources == frozenset({"docs", "github", "slack"})
    assert run.result.items
    assert run.result.evidence_complete


@pytest.mark.asyncio
async def test_submit_returns_aggregated_result(stores, classifier_factory) -> None:
    orchestrator = _orchestrator(stores, classifier_factory(RESPONSES))

    result = await orchestrator.submit(Query(DOCS_QUESTION))

    assert result.chunk_ids[0] == "docs-get-user-profile"
    assert len(orchestrator.trace_store) == 1
    assert orchestrator.trace_store.summary()["total_requests"] == 1
