"""In-memory source adapter.

Implements SourceAdapterProtocol via duck typing. Used by the test suite and
for wiring a local pipeline without backends.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from fanout_rag.adapters.protocols import AdapterDescriptor, AdapterResponse


if TYPE_CHECKING:
    from fanout_rag.schemas.retrieval_models import Candidate, Query, TenantScope


class FakeSourceAdapter:
    """Source adapter returning preconfigured candidates.

    Attributes:
        delay: Seconds to sleep before answering.
        error: Exception raised instead of answering.
        honor_deadline: When False the adapter ignores its deadline and
            sleeps the full delay (a misbehaving backend).
        partial: Candidates returned with ``timed_out=True`` when the
            deadline cuts the delay short.
        fetch_calls: Recorded calls.
        cancelled: Set when the dispatcher cancelled an in-flight fetch.
    """

    def __init__(
        self,
        descriptor: AdapterDescriptor,
        candidates: Sequence[Candidate] = (),
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        honor_deadline: bool = True,
        partial: Sequence[Candidate] = (),
    ) -> None:
        self._descriptor = descriptor
        self._candidates = tuple(candidates)
        self.delay = delay
        self.error = error
        self.honor_deadline = honor_deadline
        self.partial = tuple(partial)
        self.fetch_calls: list[dict[str, Any]] = []
        self.cancelled = False

    @property
    def descriptor(self) -> AdapterDescriptor:
        return self._descriptor

    async def fetch(
        self,
        query: Query,
        scope: TenantScope,
        deadline: float,
    ) -> AdapterResponse:
        """Record the call, wait ``delay`` and answer."""
        self.fetch_calls.append({"query": query, "scope": scope, "deadline": deadline})
        try:
            if self.delay:
                if self.honor_deadline:
                    budget = max(0.0, deadline - time.monotonic())
                    if self.delay > budget:
                        await asyncio.sleep(budget)
                        return AdapterResponse(candidates=self.partial, timed_out=True)
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return AdapterResponse(candidates=self._candidates)
