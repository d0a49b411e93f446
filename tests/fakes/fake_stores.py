"""Fake storage capabilities for KnowledgeStoreAdapter tests.

In-memory implementations of the search, graph, episode and taxonomy
capability protocols, with delay and error injection.

Pattern: FakeClient for testing
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from fanout_rag.adapters.protocols import StoreHit


class _RecordingBackend:
    def __init__(
        self,
        hits: Sequence[StoreHit] | Mapping[str, Sequence[StoreHit]] = (),
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        delays: Mapping[str, float] | None = None,
        errors: Mapping[str, Exception] | None = None,
    ) -> None:
        """Initialize fake backend.

        Args:
            hits: Hits for every call, or a mapping of search text to hits
            delay: Seconds to sleep on every call
            error: Exception raised on every call
            delays: Per-text delays (override ``delay``)
            errors: Per-text exceptions (override ``error``)
        """
        self._hits = hits
        self.delay = delay
        self.error = error
        self.delays = dict(delays or {})
        self.errors = dict(errors or {})
        self.call_history: list[dict[str, Any]] = []
        self.finished = 0
        self.cancelled = 0

    async def _answer(self, method: str, text: str, **kwargs: Any) -> list[StoreHit]:
        self.call_history.append({"method": method, "text": text, **kwargs})
        delay = self.delays.get(text, self.delay)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        self.finished += 1
        error = self.errors.get(text, self.error)
        if error is not None:
            raise error
        if isinstance(self._hits, Mapping):
            return list(self._hits.get(text, ()))
        return list(self._hits)


class FakeSearchBackend(_RecordingBackend):
    """Implements SearchCapability."""

    async def search(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> list[StoreHit]:
        return await self._answer(
            "search", text, tenant_id=tenant_id, limit=limit, categories=categories
        )


class FakeGraphBackend(_RecordingBackend):
    """Implements GraphCapability."""

    async def traverse(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> list[StoreHit]:
        return await self._answer(
            "traverse", text, tenant_id=tenant_id, limit=limit, categories=categories
        )


class FakeEpisodeBackend(_RecordingBackend):
    """Implements EpisodeCapability."""

    async def recent_episodes(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> list[StoreHit]:
        return await self._answer(
            "recent_episodes", text, tenant_id=tenant_id, limit=limit, categories=categories
        )


class FakeTaxonomy:
    """Implements TaxonomyCapability with a fixed expansion table."""

    def __init__(
        self,
        expansions: Mapping[str, Sequence[str]] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._expansions = dict(expansions or {})
        self.delay = delay
        self.call_history: list[frozenset[str]] = []

    async def expand(self, categories: frozenset[str], tenant_id: str) -> frozenset[str]:
        self.call_history.append(categories)
        if self.delay:
            await asyncio.sleep(self.delay)
        expanded = set(categories)
        for category in categories:
            expanded.update(self._expansions.get(category, ()))
        return frozenset(expanded)


def hit(
    hit_id: str,
    score: float,
    *,
    tenant_id: str = "t1",
    content: str | None = None,
    **kwargs: Any,
) -> StoreHit:
    return StoreHit(
        id=hit_id,
        content=content if content is not None else f"content of {hit_id}",
        score=score,
        tenant_id=tenant_id,
        **kwargs,
    )
