"""Retrieval orchestration core: route, plan, fan out, aggregate."""

from .config import OrchestratorConfig, load_config
from .pipeline import RetrievalOrchestrator

__all__ = ["OrchestratorConfig", "RetrievalOrchestrator", "load_config"]
