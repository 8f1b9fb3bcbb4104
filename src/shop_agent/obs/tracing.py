"""Flow traces, model attempt logs and summary metrics."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from shop_agent.types import AttemptOutcome, ModelAttempt


@dataclass(slots=True)
class FlowTrace:
    trace_id: str
    flow_id: str
    timestamp_utc: str
    query: str
    status: str
    platform_id: str | None
    order_id: str | None
    error_code: str | None
    error_message: str | None
    transitions: list[str]
    messages: list[str]
    model_attempts: list[ModelAttempt]
    latency_ms: float


@dataclass(slots=True)
class ModelCallRecord:
    timestamp_utc: str
    attempts: list[ModelAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return any(a.outcome is AttemptOutcome.SUCCESS for a in self.attempts)


class TraceStore:
    """In-memory diagnostics storage for API-level observability."""

    def __init__(self, *, max_model_calls: int = 200) -> None:
        self._records: dict[str, FlowTrace] = {}
        self._model_calls: deque[ModelCallRecord] = deque(maxlen=max_model_calls)

    def record_model_call(self, attempts: list[ModelAttempt]) -> ModelCallRecord:
        record = ModelCallRecord(
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            attempts=list(attempts),
        )
        self._model_calls.append(record)
        return record

    def recent_model_calls(self, limit: int = 20) -> list[ModelCallRecord]:
        return list(self._model_calls)[-limit:]

    def create_record(
        self,
        *,
        flow_id: str,
        query: str,
        status: str,
        platform_id: str | None,
        order_id: str | None,
        error_code: str | None,
        error_message: str | None,
        transitions: list[str],
        messages: list[str],
        model_attempts: list[ModelAttempt],
        latency_ms: float,
    ) -> FlowTrace:
        trace_id = str(uuid.uuid4())
        record = FlowTrace(
            trace_id=trace_id,
            flow_id=flow_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            status=status,
            platform_id=platform_id,
            order_id=order_id,
            error_code=error_code,
            error_message=error_message,
            transitions=list(transitions),
            messages=list(messages),
            model_attempts=list(model_attempts),
            latency_ms=latency_ms,
        )
        self._records[trace_id] = record
        return record

    def get(self, trace_id: str) -> FlowTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[FlowTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate flow outcomes and model cascade health for dashboard display."""
        records = list(self._records.values())
        attempts = [a for call in self._model_calls for a in call.attempts]
        failed_attempts = sum(1 for a in attempts if a.outcome is AttemptOutcome.FAILED)
        total = len(records)
        if total == 0:
            return {
                "total_flows": 0,
                "completed": 0,
                "needs_manual_checkout": 0,
                "failed": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "model_calls": len(self._model_calls),
                "model_attempts": len(attempts),
                "failed_model_attempts": failed_attempts,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        by_status: dict[str, int] = {}
        for record in records:
            by_status[record.status] = by_status.get(record.status, 0) + 1

        return {
            "total_flows": total,
            "completed": by_status.get("COMPLETED", 0),
            "needs_manual_checkout": by_status.get("NEEDS_MANUAL_CHECKOUT", 0),
            "failed": by_status.get("FAILED", 0),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "model_calls": len(self._model_calls),
            "model_attempts": len(attempts),
            "failed_model_attempts": failed_attempts,
        }


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
