"""Deterministic pattern rules evaluated before any classifier call."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from rag_orchestrator.types import Intent, RetrievalMode, RoutingDecision

_ISSUE_REF = re.compile(
    r"(?:\b(?:issue|pr|pull\s+request|ticket)\s*#?\s*(?P<num>\d+)\b)|(?:#(?P<hash>\d+)\b)",
    flags=re.IGNORECASE,
)
_STATUS_TOKENS = re.compile(
    r"\b(?:status|state|open|opened|closed|merged|resolved|fixed)\b",
    flags=re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class PatternRule:
    """A regex-gated routing rule that short-circuits the classifier."""

    name: str
    intent: Intent
    sources: tuple[str, ...]
    retrieval_mode: RetrievalMode
    confidence: float
    requires_status_token: bool = False

    def match(self, text: str) -> RoutingDecision | None:
        ref = _ISSUE_REF.search(text)
        if ref is None:
            return None
        if self.requires_status_token and not _STATUS_TOKENS.search(text):
            return None
        number = ref.group("num") or ref.group("hash")
        return RoutingDecision(
            intent=self.intent,
            sources=frozenset(self.sources),
            retrieval_mode=self.retrieval_mode,
            extracted_entities={"issue_number": number},
            confidence=self.confidence,
            reason=f"rule:{self.name}",
        )


DEFAULT_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        name="issue_status",
        intent=Intent.GITHUB_STATUS,
        sources=("github",),
        retrieval_mode=RetrievalMode.METADATA_ONLY,
        confidence=0.95,
        requires_status_token=True,
    ),
    PatternRule(
        name="issue_reference",
        intent=Intent.GITHUB_STATUS,
        sources=("github",),
        retrieval_mode=RetrievalMode.HYBRID,
        confidence=0.75,
    ),
)


def match_rules(
    text: str, rules: Sequence[PatternRule] = DEFAULT_RULES
) -> RoutingDecision | None:
    """Return the decision of the first matching rule, in table order."""
    for rule in rules:
        decision = rule.match(text)
        if decision is not None:
            return decision
    return None
