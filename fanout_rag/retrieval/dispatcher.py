"""Fan-Out Dispatcher.

Runs every permitted source adapter concurrently against the same query.

Two time bounds apply:
- per adapter: ``adapter_timeout`` from dispatch start. The adapter is told
  to finish slightly earlier (so it can hand back partial results); if it
  still has not returned, its task is cancelled.
- dispatch-wide: the earlier of the query deadline and ``dispatch_budget``
  from dispatch start. Stragglers are cancelled (not awaited) and the
  pipeline moves on with whatever arrived.

A failing or slow adapter only loses its own candidates. Every adapter's
output passes the tenant guard's ingestion check before it is collected.

Anti-Patterns Avoided (per CODING_PATTERNS_ANALYSIS.md):
- S3776: Cognitive complexity < 15 per function (extracted helpers)
- #42/#43: Proper async/await patterns
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fanout_rag.core.constants import (
    ADAPTER_DEADLINE_MARGIN,
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_DISPATCH_BUDGET,
)
from fanout_rag.core.exceptions import AdapterTimeoutError
from fanout_rag.core.logging import get_logger
from fanout_rag.retrieval.tenant_guard import TenantIsolationGuard
from fanout_rag.schemas.retrieval_models import (
    AdapterOutcome,
    AdapterStatus,
    Candidate,
)


if TYPE_CHECKING:
    from fanout_rag.adapters.protocols import SourceAdapterProtocol
    from fanout_rag.schemas.retrieval_models import Query


logger = get_logger(__name__)


@dataclass
class DispatchResult:
    """Per-adapter outcomes of one dispatch, in adapter order."""

    outcomes: list[AdapterOutcome] = field(default_factory=list)

    @property
    def candidates(self) -> list[Candidate]:
        """Concatenation of every admitted candidate."""
        return [c for outcome in self.outcomes for c in outcome.candidates]

    @property
    def succeeded(self) -> list[AdapterOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def rejected(self) -> int:
        return sum(o.rejected for o in self.outcomes)


def _discard_result(task: asyncio.Task[AdapterOutcome]) -> None:
    """Retrieve an abandoned task's result so it is never reported as lost."""
    if not task.cancelled():
        task.exception()


class FanOutDispatcher:
    """Concurrent dispatcher for source adapters.

    Pattern: Dispatcher pattern with parallel execution
    """

    def __init__(
        self,
        guard: TenantIsolationGuard | None = None,
        adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT,
        dispatch_budget: float = DEFAULT_DISPATCH_BUDGET,
    ) -> None:
        """Initialize dispatcher.

        Args:
            guard: Tenant guard applied to every adapter's output
            adapter_timeout: Per-adapter soft timeout in seconds
            dispatch_budget: Max seconds to wait for all adapters
        """
        self._guard = guard or TenantIsolationGuard()
        self.adapter_timeout = adapter_timeout
        self.dispatch_budget = dispatch_budget

    async def dispatch(
        self,
        query: Query,
        adapters: Sequence[SourceAdapterProtocol],
    ) -> DispatchResult:
        """Query all adapters concurrently and collect what arrives in time.

        Never raises for adapter failures; an empty DispatchResult is a valid
        answer.
        """
        if not adapters:
            return DispatchResult()

        started = time.monotonic()
        wait_until = min(query.deadline, started + self.dispatch_budget)

        tasks: dict[asyncio.Task[AdapterOutcome], SourceAdapterProtocol] = {}
        for adapter in adapters:
            task = asyncio.create_task(
                self._invoke(adapter, query, started, wait_until),
                name=f"adapter:{adapter.descriptor.name}",
            )
            tasks[task] = adapter

        done, _pending = await asyncio.wait(
            tasks, timeout=max(0.0, wait_until - time.monotonic())
        )

        outcomes: list[AdapterOutcome] = []
        for task, adapter in tasks.items():
            if task in done:
                outcomes.append(task.result())
                continue
            task.cancel()
            task.add_done_callback(_discard_result)
            outcomes.append(self._abandoned(adapter, started))
        return DispatchResult(outcomes=outcomes)

    async def _invoke(
        self,
        adapter: SourceAdapterProtocol,
        query: Query,
        started: float,
        wait_until: float,
    ) -> AdapterOutcome:
        """Run one adapter; failures become an outcome, never an exception."""
        descriptor = adapter.descriptor
        hard_deadline = min(started + self.adapter_timeout, wait_until)
        soft_deadline = hard_deadline - ADAPTER_DEADLINE_MARGIN

        try:
            response = await asyncio.wait_for(
                adapter.fetch(query, query.scope, soft_deadline),
                timeout=max(0.0, hard_deadline - time.monotonic()),
            )
        except (asyncio.TimeoutError, AdapterTimeoutError) as e:
            return self._failed(adapter, started, AdapterStatus.TIMED_OUT, e)
        except Exception as e:  # noqa: BLE001 - adapter isolation boundary
            return self._failed(adapter, started, AdapterStatus.FAILED, e)

        arrived_at = time.monotonic()
        admitted, rejected = self._guard.admit(query.scope, descriptor, response.candidates)
        return AdapterOutcome(
            adapter=descriptor.name,
            source_type=descriptor.source_type,
            score_semantics=descriptor.score_semantics,
            status=AdapterStatus.PARTIAL if response.timed_out else AdapterStatus.OK,
            candidates=tuple(admitted),
            latency_ms=(arrived_at - started) * 1000,
            arrived_at=arrived_at,
            error=response.error,
            rejected=rejected,
        )

    def _failed(
        self,
        adapter: SourceAdapterProtocol,
        started: float,
        status: AdapterStatus,
        error: BaseException,
    ) -> AdapterOutcome:
        descriptor = adapter.descriptor
        arrived_at = time.monotonic()
        message = str(error) or type(error).__name__
        if status is AdapterStatus.TIMED_OUT and not str(error):
            message = f"no response within {self.adapter_timeout:.3f}s"
        logger.warning(
            "adapter_failed",
            adapter=descriptor.name,
            status=status.value,
            error=message,
        )
        return AdapterOutcome(
            adapter=descriptor.name,
            source_type=descriptor.source_type,
            score_semantics=descriptor.score_semantics,
            status=status,
            latency_ms=(arrived_at - started) * 1000,
            arrived_at=arrived_at,
            error=message,
        )

    def _abandoned(self, adapter: SourceAdapterProtocol, started: float) -> AdapterOutcome:
        descriptor = adapter.descriptor
        now = time.monotonic()
        logger.warning("adapter_abandoned", adapter=descriptor.name)
        return AdapterOutcome(
            adapter=descriptor.name,
            source_type=descriptor.source_type,
            score_semantics=descriptor.score_semantics,
            status=AdapterStatus.TIMED_OUT,
            latency_ms=(now - started) * 1000,
            arrived_at=now,
            error="dispatch deadline reached",
        )
