"""Per-query tracing and summary metrics."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(slots=True)
class StageTimings:
    route_ms: float = 0.0
    plan_ms: float = 0.0
    execute_ms: float = 0.0
    aggregate_ms: float = 0.0


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    query: str
    caller_id: str
    intent: str
    confidence: float
    route_reason: str
    plan_rule: str
    sources: list[str]
    source_outcomes: list[dict[str, Any]]
    result_size: int
    evidence_complete: bool
    latency_ms: float
    stages: StageTimings = field(default_factory=StageTimings)


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records

    def new_trace_id(self) -> str:
        return str(uuid.uuid4())

    def create_record(
        self,
        *,
        trace_id: str | None = None,
        query: str,
        caller_id: str,
        intent: str,
        confidence: float,
        route_reason: str,
        plan_rule: str,
        sources: list[str],
        source_outcomes: list[dict[str, Any]],
        result_size: int,
        evidence_complete: bool,
        latency_ms: float,
        stages: StageTimings | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=trace_id or self.new_trace_id(),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            caller_id=caller_id,
            intent=intent,
            confidence=confidence,
            route_reason=route_reason,
            plan_rule=plan_rule,
            sources=sources,
            source_outcomes=source_outcomes,
            result_size=result_size,
            evidence_complete=evidence_complete,
            latency_ms=latency_ms,
            stages=stages or StageTimings(),
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        if limit <= 0:
            return []
        return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "incomplete_evidence_rate": 0.0,
                "empty_result_rate": 0.0,
                "fast_path_rate": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        incomplete = sum(1 for record in records if not record.evidence_complete)
        empty = sum(1 for record in records if record.result_size == 0)
        fast_path = sum(1 for record in records if record.route_reason.startswith("rule:"))

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "incomplete_evidence_rate": incomplete / total,
            "empty_result_rate": empty / total,
            "fast_path_rate": fast_path / total,
        }


class Timer:
    """Simple context timer used around pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
