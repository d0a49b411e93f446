"""Knowledge Store Adapter.

One concrete adapter type that composes narrow storage capabilities by
delegation. Which capability serves ``fetch`` is decided by the descriptor's
source type, so the same class backs the vector, full-text, graph and
live-connector adapters of a deployment:

    VECTOR_STORE / FULL_TEXT -> SearchCapability
    GRAPH                    -> GraphCapability
    LIVE_CONNECTOR           -> EpisodeCapability

A TaxonomyCapability, when present, expands the query's category filters
before any capability is called; every capability receives the expanded set.

Pattern: Composition + delegation over capability protocols
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine, Sequence
from typing import TYPE_CHECKING, Any

from fanout_rag.adapters.protocols import (
    AdapterDescriptor,
    AdapterResponse,
    EpisodeCapability,
    GraphCapability,
    SearchCapability,
    StoreHit,
    TaxonomyCapability,
)
from fanout_rag.core.exceptions import AdapterFailureError, ConfigurationError
from fanout_rag.schemas.retrieval_models import Candidate, SourceType


if TYPE_CHECKING:
    from fanout_rag.schemas.retrieval_models import Query, TenantScope


logger = logging.getLogger(__name__)

# (text, tenant_id, limit, categories, timeout)
HitLoader = Callable[[str, str, int, frozenset[str], float], Coroutine[Any, Any, Sequence[StoreHit]]]


class KnowledgeStoreAdapter:
    """Source adapter backed by composed storage capabilities.

    Each search string of the query (raw text plus expansions) becomes one
    backend call; calls run concurrently and whatever completes before the
    deadline is returned, so a partially answered query still yields
    candidates.

    Attributes:
        descriptor: What this adapter advertises.
        limit: Max hits requested per backend call and returned overall.
    """

    def __init__(
        self,
        descriptor: AdapterDescriptor,
        *,
        search: SearchCapability | None = None,
        graph: GraphCapability | None = None,
        episodes: EpisodeCapability | None = None,
        taxonomy: TaxonomyCapability | None = None,
        limit: int = 20,
    ) -> None:
        self._descriptor = descriptor
        self._search = search
        self._graph = graph
        self._episodes = episodes
        self._taxonomy = taxonomy
        self.limit = limit
        self._load = self._bind_capability()

    @property
    def descriptor(self) -> AdapterDescriptor:
        return self._descriptor

    def _bind_capability(self) -> HitLoader:
        """Pick the capability call that serves this adapter's source type."""
        source_type = self._descriptor.source_type
        searchable = source_type in (SourceType.VECTOR_STORE, SourceType.FULL_TEXT)
        if searchable and self._search is not None:
            return self._search.search
        if source_type is SourceType.GRAPH and self._graph is not None:
            return self._graph.traverse
        if source_type is SourceType.LIVE_CONNECTOR and self._episodes is not None:
            return self._episodes.recent_episodes
        raise ConfigurationError(
            f"Adapter '{self._descriptor.name}' has no capability for {source_type.value}",
            field="capability",
            value=source_type.value,
        )

    async def fetch(
        self,
        query: Query,
        scope: TenantScope,
        deadline: float,
    ) -> AdapterResponse:
        """Query the backing capability for every search string.

        Cancelling ``fetch`` cancels every backend call still in flight.
        """
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return AdapterResponse(timed_out=True)

        if not query.search_strings:
            return AdapterResponse()

        tenant_id = scope.tenant_id
        categories = await self._expand_filters(query.filters, tenant_id, remaining)
        remaining = max(0.0, deadline - time.monotonic())
        tasks = [
            asyncio.create_task(self._load(text, tenant_id, self.limit, categories, remaining))
            for text in query.search_strings
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=remaining)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        for task in pending:
            task.cancel()

        hit_lists: list[Sequence[StoreHit]] = []
        errors: list[str] = []
        for task in tasks:
            if task not in done:
                continue
            exc = task.exception()
            if exc is not None:
                errors.append(str(exc))
                continue
            hit_lists.append(task.result())

        if errors and not hit_lists and not pending:
            raise AdapterFailureError(
                f"All backend calls failed: {'; '.join(errors)}",
                adapter=self._descriptor.name,
            )

        candidates = self._to_candidates(self._merge_hits(hit_lists), scope)
        return AdapterResponse(
            candidates=tuple(candidates),
            timed_out=bool(pending),
            error="; ".join(errors) or None,
        )

    async def _expand_filters(
        self, filters: frozenset[str], tenant_id: str, remaining: float
    ) -> frozenset[str]:
        if not filters or self._taxonomy is None:
            return filters
        try:
            return await asyncio.wait_for(
                self._taxonomy.expand(filters, tenant_id), timeout=remaining
            )
        except asyncio.TimeoutError:
            logger.warning("Taxonomy expansion timed out for %s", self._descriptor.name)
            return filters

    def _merge_hits(self, hit_lists: list[Sequence[StoreHit]]) -> list[StoreHit]:
        """Merge per-string hit lists, keeping each id's best score."""
        higher_is_better = self._descriptor.score_semantics.higher_is_better
        best: dict[str, StoreHit] = {}
        for hits in hit_lists:
            for hit in hits:
                current = best.get(hit.id)
                if current is None:
                    best[hit.id] = hit
                    continue
                better = hit.score > current.score if higher_is_better else hit.score < current.score
                if better:
                    best[hit.id] = hit
        ordered = sorted(best.values(), key=lambda h: h.score, reverse=higher_is_better)
        return ordered[: self.limit]

    def _to_candidates(self, hits: list[StoreHit], scope: TenantScope) -> list[Candidate]:
        descriptor = self._descriptor
        adapter_permission = descriptor.permission_for(scope.tenant_id)
        candidates: list[Candidate] = []
        for hit in hits:
            # Backends are expected to pre-filter; never pass on a foreign tenant.
            if hit.tenant_id != scope.tenant_id:
                continue
            required = set(hit.required_permissions)
            if adapter_permission:
                required.add(adapter_permission)
            candidates.append(
                Candidate(
                    content_id=hit.id,
                    source_type=descriptor.source_type,
                    score=hit.score,
                    adapter=descriptor.name,
                    content=hit.content,
                    tenant_id=hit.tenant_id,
                    metadata=dict(hit.metadata),
                    required_permissions=frozenset(required),
                    embedding=hit.embedding,
                )
            )
        return candidates
