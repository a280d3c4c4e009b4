"""Intent classifier collaborator and strict validation of its output."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field, ValidationError, field_validator

from rag_orchestrator.errors import ClassificationError
from rag_orchestrator.types import Intent, RetrievalMode, RoutingDecision

_JSON_RE = re.compile(r"\{.*\}", flags=re.DOTALL)

_SYSTEM_PROMPT = """
You route questions for an engineering knowledge assistant.

Return JSON only, with exactly these keys:
{{"intent": "DOCS_LOOKUP | GITHUB_STATUS | SYNTHESIS | UNKNOWN",
  "sources": [one or more of: {sources}],
  "retrieval_mode": "semantic | lexical | hybrid | metadata_only",
  "extracted_entities": {{"<entity kind>": "<value>"}},
  "confidence": 0.0-1.0}}

Rules:
1) DOCS_LOOKUP for questions answered by product or API documentation.
2) GITHUB_STATUS for the live state of an issue or pull request.
3) SYNTHESIS for questions that need evidence from several sources.
4) UNKNOWN when none of the above applies.
5) Keep identifiers (function names, issue numbers) verbatim in extracted_entities.
""".strip()


class IntentClassifier(Protocol):
    """External classification collaborator: query text in, JSON out."""

    async def classify(self, text: str) -> str | Mapping[str, Any]:
        """Return the classifier's raw structured output."""


class ClassifierPayload(BaseModel):
    """Schema the classifier output must satisfy."""

    intent: Intent
    sources: list[str] = Field(min_length=1)
    retrieval_mode: RetrievalMode = RetrievalMode.HYBRID
    extracted_entities: dict[str, str] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("intent", mode="before")
    @classmethod
    def _normalize_intent(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("retrieval_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("sources", mode="before")
    @classmethod
    def _normalize_sources(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return value

    @field_validator("extracted_entities", mode="before")
    @classmethod
    def _stringify_entities(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(key): str(item) for key, item in value.items() if item is not None}
        return value


def parse_classifier_output(
    raw: str | Mapping[str, Any],
    known_sources: Iterable[str],
) -> RoutingDecision:
    """Validate raw classifier output into a `RoutingDecision`.

    Raises:
        ClassificationError: on unparsable JSON, schema violations, or
            sources outside `known_sources`.
    """

    data = _load_json(raw)
    try:
        payload = ClassifierPayload.model_validate(data)
    except ValidationError as exc:
        raise ClassificationError(f"Classifier output failed validation: {exc}") from exc

    allowed = set(known_sources)
    unknown = sorted(set(payload.sources) - allowed)
    if unknown:
        raise ClassificationError(f"Classifier returned unknown sources: {unknown}")

    return RoutingDecision(
        intent=payload.intent,
        sources=frozenset(payload.sources),
        retrieval_mode=payload.retrieval_mode,
        extracted_entities=payload.extracted_entities,
        confidence=payload.confidence,
        reason="classifier",
    )


def _load_json(raw: str | Mapping[str, Any]) -> Any:
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise ClassificationError(f"Unsupported classifier output type: {type(raw).__name__}")
    text = raw.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_RE.search(text)
        if not match:
            raise ClassificationError("Classifier output is not JSON") from None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ClassificationError("Classifier output is not JSON") from exc


class LLMIntentClassifier:
    """Classifier backed by a LangChain chat model.

    `llm` is any LangChain runnable chat model exposing `ainvoke`, e.g.
    `ChatOpenAI(temperature=0)`.
    """

    def __init__(self, llm: Any, known_sources: Iterable[str]) -> None:
        self.llm = llm
        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                ("human", "{query}"),
            ]
        )
        self._sources = ", ".join(sorted(known_sources))

    async def classify(self, text: str) -> str:
        messages = self.prompt.format_messages(sources=self._sources, query=text)
        response = await self.llm.ainvoke(messages)
        return _message_text(response)


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)
