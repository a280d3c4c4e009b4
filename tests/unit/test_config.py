import json

import pytest
from pydantic import ValidationError

from rag_orchestrator.config import OrchestratorConfig, PlannerConfig, load_config


def test_defaults() -> None:
    config = OrchestratorConfig()

    assert config.router.known_sources == ["docs", "github", "slack"]
    assert config.planner.tau_high == 0.8
    assert config.aggregator.semantic_weight == config.aggregator.lexical_weight == 1.0
    assert config.executor.per_source_timeout_seconds < config.planner.deadline_seconds


def test_load_config_reads_json_file(tmp_path) -> None:
    path = tmp_path / "orchestrator.json"
    path.write_text(
        json.dumps({"planner": {"docs_top_k": 7}, "aggregator": {"freshness_epsilon": 0.05}}),
        encoding="utf-8",
    )

    config = load_config(path, environ={})

    assert config.planner.docs_top_k == 7
    assert config.aggregator.freshness_epsilon == 0.05
    assert config.router.known_sources == ["docs", "github", "slack"]


def test_env_overrides_win_over_file(tmp_path) -> None:
    path = tmp_path / "orchestrator.json"
    path.write_text(json.dumps({"planner": {"tau_high": 0.6}}), encoding="utf-8")
    environ = {
        "RAG_ORCHESTRATOR_CONFIG": str(path),
        "RAG_ORCHESTRATOR_TAU_HIGH": "0.9",
        "RAG_ORCHESTRATOR_PER_SOURCE_TIMEOUT": "0.25",
        "RAG_ORCHESTRATOR_SOURCES": "docs, jira ,",
        "RAG_ORCHESTRATOR_LOG_LEVEL": "debug",
    }

    config = load_config(environ=environ)

    assert config.planner.tau_high == 0.9
    assert config.executor.per_source_timeout_seconds == 0.25
    assert config.router.known_sources == ["docs", "jira"]
    assert config.logging.level == "debug"


def test_non_object_config_file_is_rejected(tmp_path) -> None:
    path = tmp_path / "orchestrator.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path, environ={})


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config(environ={"RAG_ORCHESTRATOR_TAU_HIGH": "1.5"})
    with pytest.raises(ValidationError):
        PlannerConfig(docs_top_k=10, max_top_k=5)
