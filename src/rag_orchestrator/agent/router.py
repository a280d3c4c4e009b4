"""Intent router: deterministic fast path, classifier fallback, total fallback."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace

from rag_orchestrator.agent.classifier import IntentClassifier, parse_classifier_output
from rag_orchestrator.agent.rules import DEFAULT_RULES, PatternRule, match_rules
from rag_orchestrator.config import RouterConfig
from rag_orchestrator.errors import ClassificationError
from rag_orchestrator.obs.logging import get_logger
from rag_orchestrator.types import Intent, Query, RetrievalMode, RoutingDecision

logger = get_logger(__name__)

_FALLBACK_PREFIX = "fallback:"


class IntentRouter:
    """Turns a query into a validated `RoutingDecision`.

    `route` never raises and never waits longer than the classification
    timeout. Any failure along the way yields the UNKNOWN fallback decision
    over every known source.
    """

    def __init__(
        self,
        classifier: IntentClassifier | None = None,
        config: RouterConfig | None = None,
        rules: Sequence[PatternRule] = DEFAULT_RULES,
    ) -> None:
        self.classifier = classifier
        self.config = config or RouterConfig()
        self._known = frozenset(self.config.known_sources)
        # rules targeting a source this deployment lacks can never be planned
        self.rules = tuple(rule for rule in rules if set(rule.sources) <= self._known)

    @property
    def known_sources(self) -> frozenset[str]:
        return self._known

    def fallback(self, reason: str) -> RoutingDecision:
        return RoutingDecision(
            intent=Intent.UNKNOWN,
            sources=self._known,
            retrieval_mode=RetrievalMode.HYBRID,
            confidence=0.0,
            reason=f"{_FALLBACK_PREFIX}{reason}",
        )

    async def route(self, query: Query) -> RoutingDecision:
        try:
            decision = await self._route(query)
            if not decision.reason.startswith(_FALLBACK_PREFIX):
                decision = self._apply_hints(decision, query)
        except Exception as exc:
            logger.warning(
                "route_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            decision = self.fallback("internal_error")
        return replace(decision, query_text=query.text)

    async def _route(self, query: Query) -> RoutingDecision:
        text = query.text.strip()
        if not text:
            return self.fallback("empty_query")

        if self.config.fast_path_enabled:
            decision = match_rules(text, self.rules)
            if decision is not None:
                logger.info(
                    "route_fast_path",
                    rule=decision.reason,
                    intent=decision.intent.value,
                    confidence=decision.confidence,
                )
                return decision

        if self.classifier is None:
            return self.fallback("no_classifier")

        try:
            raw = await asyncio.wait_for(
                self.classifier.classify(text),
                timeout=self.config.classification_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "classification_timeout",
                timeout_seconds=self.config.classification_timeout_seconds,
            )
            return self.fallback("classifier_timeout")
        except Exception as exc:
            logger.warning(
                "classification_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self.fallback("classifier_error")

        try:
            decision = parse_classifier_output(raw, self._known)
        except ClassificationError as exc:
            logger.warning(
                "classification_invalid",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self.fallback("classifier_invalid")

        logger.info(
            "route_classified",
            intent=decision.intent.value,
            sources=sorted(decision.sources),
            confidence=decision.confidence,
        )
        return decision

    def _apply_hints(self, decision: RoutingDecision, query: Query) -> RoutingDecision:
        hinted = query.hints.get("sources")
        if hinted is None:
            return decision
        if isinstance(hinted, str):
            requested = [part.strip() for part in hinted.split(",")]
        elif isinstance(hinted, (list, tuple, set, frozenset)) and all(
            isinstance(item, str) for item in hinted
        ):
            requested = [item.strip() for item in hinted]
        else:
            logger.warning(
                "route_hint_ignored",
                hint="sources",
                hint_type=type(hinted).__name__,
            )
            return decision

        narrowed = decision.sources & frozenset(requested) & self._known
        if not narrowed:
            return decision
        return replace(decision, sources=narrowed)
