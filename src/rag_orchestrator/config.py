"""Configuration models for the retrieval orchestration core."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

CONFIG_PATH_ENV = "RAG_ORCHESTRATOR_CONFIG"
_ENV_PREFIX = "RAG_ORCHESTRATOR_"
DEFAULT_LOOKUP_ENTITY_KINDS = ("issue_number", "pr_number", "entity_id")


class RouterConfig(BaseModel):
    """Configures the intent router and its classifier fallback."""

    known_sources: list[str] = Field(
        default_factory=lambda: ["docs", "github", "slack"], min_length=1
    )
    classification_timeout_seconds: float = Field(default=2.0, gt=0.0)
    fast_path_enabled: bool = True


class PlannerConfig(BaseModel):
    """Configures plan templates: thresholds, top-k per intent, deadline."""

    tau_high: float = Field(default=0.8, ge=0.0, le=1.0)
    github_status_top_k: int = Field(default=1, ge=1)
    github_fallback_top_k: int = Field(default=3, ge=1)
    docs_top_k: int = Field(default=5, ge=1)
    synthesis_top_k: int = Field(default=8, ge=1)
    unknown_top_k: int = Field(default=3, ge=1)
    confidence_floor: float = Field(default=0.25, gt=0.0, le=1.0)
    max_top_k: int = Field(default=50, ge=1)
    synthesis_aggregate_top_k: int = Field(default=12, ge=1)
    unknown_aggregate_top_k: int = Field(default=8, ge=1)
    deadline_seconds: float = Field(default=3.0, gt=0.0)
    github_source: str = "github"
    lookup_entity_kinds: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LOOKUP_ENTITY_KINDS)
    )

    @model_validator(mode="after")
    def _check_top_k_ceiling(self) -> "PlannerConfig":
        if self.max_top_k < self.docs_top_k:
            raise ValueError("max_top_k must be >= docs_top_k")
        return self


class ExecutorConfig(BaseModel):
    """Configures per-source timeouts for adapter calls."""

    per_source_timeout_seconds: float = Field(default=1.5, gt=0.0)
    lookup_entity_kinds: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LOOKUP_ENTITY_KINDS)
    )


class AggregatorConfig(BaseModel):
    """Configures modality weights and the freshness tie-break."""

    semantic_weight: float = Field(default=1.0, ge=0.0)
    lexical_weight: float = Field(default=1.0, ge=0.0)
    authoritative_weight: float = Field(default=1.0, ge=0.0)
    freshness_epsilon: float = Field(default=0.02, ge=0.0)
    normalize_scores: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = True
    service_name: str = "rag_orchestrator"


class OrchestratorConfig(BaseModel):
    """Top-level configuration surface."""

    router: RouterConfig = Field(default_factory=RouterConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# env var suffix -> (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "TAU_HIGH": ("planner", "tau_high"),
    "DEADLINE_SECONDS": ("planner", "deadline_seconds"),
    "PER_SOURCE_TIMEOUT": ("executor", "per_source_timeout_seconds"),
    "CLASSIFICATION_TIMEOUT": ("router", "classification_timeout_seconds"),
    "FRESHNESS_EPSILON": ("aggregator", "freshness_epsilon"),
    "LOG_LEVEL": ("logging", "level"),
}


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> OrchestratorConfig:
    """Load configuration from an optional JSON file plus env overrides.

    The file path defaults to `$RAG_ORCHESTRATOR_CONFIG`. Individual values
    can be overridden with `RAG_ORCHESTRATOR_<NAME>` variables; known sources
    accept a comma-separated list via `RAG_ORCHESTRATOR_SOURCES`.
    """

    env = os.environ if environ is None else environ
    config_path = path or env.get(CONFIG_PATH_ENV)

    raw: dict[str, Any] = {}
    if config_path:
        raw = json.loads(Path(config_path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must hold a JSON object: {config_path}")

    for suffix, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(_ENV_PREFIX + suffix)
        if value is not None and value != "":
            raw.setdefault(section, {})[key] = value

    sources = env.get(_ENV_PREFIX + "SOURCES")
    if sources:
        raw.setdefault("router", {})["known_sources"] = [
            item.strip() for item in sources.split(",") if item.strip()
        ]

    return OrchestratorConfig.model_validate(raw)
