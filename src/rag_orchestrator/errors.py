"""Error taxonomy. Every error here is recovered inside the core."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for errors raised by the orchestration core."""


class ClassificationError(OrchestratorError):
    """Classifier output was malformed or failed validation."""


class SourceUnavailableError(OrchestratorError):
    """An adapter call failed or timed out."""

    def __init__(self, source: str, index_kind: str, reason: str) -> None:
        super().__init__(f"{source}/{index_kind} unavailable: {reason}")
        self.source = source
        self.index_kind = index_kind
        self.reason = reason


class PlanningError(OrchestratorError):
    """A routing decision reached the planner in a state no rule covers."""


class IdentityMismatchWarning(UserWarning):
    """Two adapters returned different content under one chunk id."""
