"""Pipeline Observability.

Structured logging and timing metrics for one retrieval run. Every log
entry carries the query id as correlation id; stage timings and adapter
outcomes are written straight into the run's RetrievalMetrics.

Anti-Patterns Avoided (per CODING_PATTERNS_ANALYSIS.md):
- #2.2: Full type annotations
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fanout_rag.core.logging import get_logger
from fanout_rag.schemas.retrieval_models import (
    AdapterOutcome,
    PipelineStage,
    RetrievalMetrics,
    RetrievalResult,
)


logger = get_logger(__name__)


class PipelineObserver:
    """Observer for one pipeline invocation.

    Provides structured logging with a correlation id, per-stage timings
    and per-adapter status/latency.
    """

    def __init__(self, correlation_id: str, metrics: RetrievalMetrics | None = None) -> None:
        """Initialize observer.

        Args:
            correlation_id: Query id of the run
            metrics: Metrics object to fill (created if not provided)
        """
        self._correlation_id = correlation_id
        self.metrics = metrics or RetrievalMetrics()
        self._log = logger.bind(correlation_id=correlation_id)
        self._started = time.monotonic()

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @contextmanager
    def stage(self, stage: PipelineStage) -> Iterator[None]:
        """Time a pipeline stage into ``metrics.stage_latency_ms``."""
        started = time.monotonic()
        try:
            yield
        finally:
            self.record_timing(stage.value, (time.monotonic() - started) * 1000)

    def record_timing(self, operation: str, duration_ms: float) -> None:
        self.metrics.stage_latency_ms[operation] = round(duration_ms, 3)

    def log_retrieval_start(self, tenant_id: str, adapters: list[str]) -> dict[str, Any]:
        """Log start of a run.

        Returns:
            Structured log entry
        """
        entry: dict[str, Any] = {"tenant_id": tenant_id, "adapters": adapters}
        self._log.info("retrieval_start", **entry)
        return entry

    def record_adapter_outcome(self, outcome: AdapterOutcome) -> dict[str, Any]:
        """Record one adapter's status, latency and rejected count."""
        self.metrics.adapter_status[outcome.adapter] = outcome.status.value
        self.metrics.adapter_latency_ms[outcome.adapter] = round(outcome.latency_ms, 3)
        self.metrics.rejected_candidates += outcome.rejected

        entry: dict[str, Any] = {
            "adapter": outcome.adapter,
            "source_type": outcome.source_type.value,
            "status": outcome.status.value,
            "candidates": len(outcome.candidates),
            "rejected": outcome.rejected,
            "latency_ms": round(outcome.latency_ms, 3),
        }
        if outcome.error:
            entry["error"] = outcome.error
        if outcome.succeeded:
            self._log.debug("adapter_outcome", **entry)
        else:
            self._log.warning("adapter_outcome", **entry)
        return entry

    def record_degraded(self, reason: str) -> None:
        self.metrics.mark_degraded(reason)

    def log_retrieval_complete(self, result: RetrievalResult) -> dict[str, Any]:
        """Log completion of a run.

        Returns:
            Structured log entry
        """
        self.record_timing("total", (time.monotonic() - self._started) * 1000)
        entry: dict[str, Any] = {
            "results": len(result),
            "source_counts": dict(result.metrics.source_counts),
            "stage_latency_ms": dict(self.metrics.stage_latency_ms),
            "degraded": self.metrics.degraded,
        }
        if self.metrics.degraded_reasons:
            entry["degraded_reasons"] = list(self.metrics.degraded_reasons)
        self._log.info("retrieval_complete", **entry)
        return entry
