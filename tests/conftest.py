"""Shared fixtures: a small multi-source corpus and controllable adapters."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pytest

from rag_orchestrator.retrieval.adapters import AuthoritativeRecord
from rag_orchestrator.retrieval.embedder import HashingEmbedder
from rag_orchestrator.retrieval.memory import (
    InMemoryLexicalIndex,
    InMemoryMetadataRegistry,
    InMemoryVectorIndex,
    index_chunks,
)
from rag_orchestrator.types import Chunk

os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("RAG_ORCHESTRATOR_CONFIG", None)


def _utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


CORPUS: dict[str, list[Chunk]] = {
    "docs": [
        Chunk(
            chunk_id="docs-get-user-profile",
            text=(
                "The signature of getUserProfile is getUserProfile(user_id: str) -> Profile. "
                "It returns the stored profile for one user."
            ),
            source="docs",
            uri="https://docs.example.com/api/users#getuserprofile",
            last_modified=_utc(2024, 5, 1),
            author="api-team",
        ),
        Chunk(
            chunk_id="docs-profile-page",
            text="User profile pages show the avatar, display name and notification settings.",
            source="docs",
            uri="https://docs.example.com/guides/profile",
            last_modified=_utc(2024, 3, 1),
        ),
        Chunk(
            chunk_id="docs-token-refresh",
            text=(
                "Authentication tokens expire after one hour and clients must refresh "
                "them before login retries."
            ),
            source="docs",
            uri="https://docs.example.com/guides/auth",
            last_modified=_utc(2024, 4, 15),
        ),
    ],
    "github": [
        Chunk(
            chunk_id="github-482-thread",
            text="Issue 482: login fails with expired token. Status: open. Reproduced on staging.",
            source="github",
            uri="https://github.example.com/acme/app/issues/482",
            last_modified=_utc(2024, 1, 10),
        ),
        Chunk(
            chunk_id="github-pr-17",
            text="PR 17 refreshes authentication tokens before expiry to fix login failures.",
            source="github",
            uri="https://github.example.com/acme/app/pull/17",
            last_modified=_utc(2024, 5, 20),
        ),
    ],
    "slack": [
        Chunk(
            chunk_id="slack-incident-482",
            text=(
                "Incident channel: login failures traced to token expiry, "
                "fix tracked in issue 482."
            ),
            source="slack",
            uri="https://chat.example.com/archives/incident",
            last_modified=_utc(2024, 2, 2),
        ),
    ],
}

ISSUE_482 = AuthoritativeRecord(
    entity_id="482",
    source="github",
    status="closed",
    title="Issue 482: login fails with expired token",
    uri="https://github.example.com/acme/app/issues/482",
    updated_at=_utc(2024, 6, 1),
    author="maintainer",
    pointers=("github-482-thread",),
)


def seed_corpus(
    embedder: HashingEmbedder,
    vector: InMemoryVectorIndex,
    lexical: InMemoryLexicalIndex,
    registry: InMemoryMetadataRegistry,
) -> None:
    for source, chunks in CORPUS.items():
        index_chunks(embedder, vector, lexical, source, chunks)
    registry.put(ISSUE_482)


class CountingEmbedder:
    def __init__(self, inner: HashingEmbedder) -> None:
        self.inner = inner
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return await self.inner.embed(text)


class ControlledAdapter:
    """Wraps an in-memory adapter with per-source delays, failures and a call log."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.calls: list[str] = []
        self.delays: dict[str, float] = {}
        self.failing: set[str] = set()

    async def _enter(self, source: str) -> None:
        self.calls.append(source)
        if source in self.failing:
            raise ConnectionError(f"{source} backend refused the connection")
        delay = self.delays.get(source)
        if delay:
            await asyncio.sleep(delay)

    async def query(self, namespace: str, payload: Any, top_k: int) -> Any:
        await self._enter(namespace)
        return await self.inner.query(namespace, payload, top_k)

    async def lookup(self, source: str, entity_id: str) -> Any:
        await self._enter(source)
        return await self.inner.lookup(source, entity_id)


class ScriptedClassifier:
    """Returns canned classifier output per query text."""

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        *,
        default: Any = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.responses = responses or {}
        self.default = default
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def classify(self, text: str) -> Any:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.responses.get(text, self.default)


@dataclass
class Stores:
    embedder: CountingEmbedder
    vector: ControlledAdapter
    lexical: ControlledAdapter
    registry: ControlledAdapter

    def adapters(self) -> dict[str, Any]:
        return {
            "embedder": self.embedder,
            "vector": self.vector,
            "lexical": self.lexical,
            "metadata": self.registry,
        }


@pytest.fixture
def stores() -> Stores:
    embedder = HashingEmbedder()
    vector = InMemoryVectorIndex()
    lexical = InMemoryLexicalIndex()
    registry = InMemoryMetadataRegistry()
    seed_corpus(embedder, vector, lexical, registry)
    return Stores(
        embedder=CountingEmbedder(embedder),
        vector=ControlledAdapter(vector),
        lexical=ControlledAdapter(lexical),
        registry=ControlledAdapter(registry),
    )


@pytest.fixture
def classifier_factory() -> type[ScriptedClassifier]:
    return ScriptedClassifier


@pytest.fixture
def ingest_payloads() -> dict[str, Any]:
    """Request bodies that load the shared corpus through the ingest endpoints."""
    chunk_requests = [
        {
            "source": source,
            "chunks": [
                {
                    "chunk_id": chunk.chunk_id,
                    "text": chunk.text,
                    "uri": chunk.uri,
                    "last_modified": _iso(chunk.last_modified),
                    "author": chunk.author,
                }
                for chunk in chunks
            ],
        }
        for source, chunks in CORPUS.items()
    ]
    record_request = {
        "records": [
            {
                "entity_id": ISSUE_482.entity_id,
                "source": ISSUE_482.source,
                "status": ISSUE_482.status,
                "title": ISSUE_482.title,
                "uri": ISSUE_482.uri,
                "updated_at": _iso(ISSUE_482.updated_at),
                "author": ISSUE_482.author,
                "pointers": list(ISSUE_482.pointers),
            }
        ]
    }
    return {"chunks": chunk_requests, "records": record_request}
