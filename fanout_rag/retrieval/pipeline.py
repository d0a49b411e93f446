"""Retrieval Pipeline.

Orchestrates one query end to end:

    authorize -> dispatch -> fuse -> dedup -> rerank -> screen -> assemble

Stage order is strict. Only dispatch and rerank suspend; the other stages
are synchronous transforms over the collected list.

Propagation policy: AuthorizationDeniedError is the only error a caller
sees. Adapter failures, timeouts and rerank failures degrade the result
(fewer candidates, fused order) and are reported in ``result.metrics``.

Pattern: Pipeline composition with injected collaborators
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from fanout_rag.core.logging import get_logger, query_context
from fanout_rag.retrieval.assembler import ContextAssembler
from fanout_rag.retrieval.config import PipelineConfig
from fanout_rag.retrieval.deduplicator import Deduplicator, DeduplicatorProtocol
from fanout_rag.retrieval.dispatcher import FanOutDispatcher
from fanout_rag.retrieval.fusion import FusionEngine
from fanout_rag.retrieval.observability import PipelineObserver
from fanout_rag.retrieval.reranker import Reranker
from fanout_rag.retrieval.tenant_guard import TenantIsolationGuard
from fanout_rag.schemas.retrieval_models import (
    PipelineStage,
    Query,
    RetrievalResult,
    TenantScope,
)


if TYPE_CHECKING:
    from fanout_rag.adapters.protocols import SourceAdapterProtocol
    from fanout_rag.adapters.registry import AdapterRegistry
    from fanout_rag.clients.protocols import CrossEncoderProtocol


logger = get_logger(__name__)


class RetrievalPipeline:
    """Fan-out retrieval pipeline.

    Example:
        >>> pipeline = RetrievalPipeline.from_registry(registry, config)
        >>> result = await pipeline.retrieve(query)
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapterProtocol],
        config: PipelineConfig | None = None,
        *,
        cross_encoder: CrossEncoderProtocol | None = None,
        guard: TenantIsolationGuard | None = None,
        deduplicator: DeduplicatorProtocol | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            adapters: Source adapters (filtered by ``config.enabled_adapters``)
            config: Deployment configuration (defaults if not provided)
            cross_encoder: Scoring service client for the cross-encoder variant
            guard: Tenant isolation guard
            deduplicator: Deduplicator implementation
        """
        self.config = config or PipelineConfig()
        enabled = set(self.config.enabled_adapters)
        self._adapters = [
            a for a in adapters if not enabled or a.descriptor.name in enabled
        ]
        self._guard = guard or TenantIsolationGuard()
        self._deduplicator = deduplicator or Deduplicator()
        self._reranker = Reranker(cross_encoder)

    @classmethod
    def from_registry(
        cls,
        registry: AdapterRegistry,
        config: PipelineConfig | None = None,
        **kwargs: Any,
    ) -> RetrievalPipeline:
        """Build the enabled adapters from ``registry`` and wire a pipeline."""
        config = config or PipelineConfig()
        adapters = registry.build(config.enabled_adapters)
        return cls(adapters, config, **kwargs)

    @property
    def adapters(self) -> list[SourceAdapterProtocol]:
        return list(self._adapters)

    async def search(
        self,
        text: str,
        scope: TenantScope,
        budget_seconds: float | None = None,
        **kwargs: Any,
    ) -> RetrievalResult:
        """Build a Query with the configured deadline and retrieve."""
        budget = self.config.pipeline_deadline if budget_seconds is None else budget_seconds
        return await self.retrieve(Query.create(text, scope, budget, **kwargs))

    async def retrieve(self, query: Query) -> RetrievalResult:
        """Run the pipeline for one query.

        Raises:
            AuthorizationDeniedError: The caller's scope cannot serve the query.
        """
        config = self.config.with_overrides(query.overrides)
        with query_context(query.query_id, query.tenant_id):
            return await self._run(query, config)

    async def _run(self, query: Query, config: PipelineConfig) -> RetrievalResult:
        observer = PipelineObserver(query.query_id)
        metrics = observer.metrics
        metrics.fusion_strategy = config.fusion_strategy.value
        metrics.reranker = config.reranker.value

        with observer.stage(PipelineStage.ISOLATION):
            permitted = self._guard.authorize(query, self._adapters)
        observer.log_retrieval_start(query.tenant_id, [a.descriptor.name for a in permitted])

        dispatcher = FanOutDispatcher(
            guard=self._guard,
            adapter_timeout=config.adapter_timeout,
            dispatch_budget=config.dispatch_budget,
        )
        with observer.stage(PipelineStage.RETRIEVE):
            dispatched = await dispatcher.dispatch(query, permitted)
        for outcome in dispatched.outcomes:
            observer.record_adapter_outcome(outcome)
        if dispatched.outcomes and not dispatched.succeeded:
            observer.record_degraded("no_adapter_succeeded")

        engine = FusionEngine(
            strategy=config.fusion_strategy,
            rrf_k=config.rrf_k,
            weights=config.fusion_weights,
        )
        with observer.stage(PipelineStage.FUSION):
            fused = engine.fuse(dispatched.outcomes)

        with observer.stage(PipelineStage.DEDUP):
            deduped = self._deduplicator.deduplicate(fused)

        with observer.stage(PipelineStage.RERANK):
            reranked = await self._reranker.rerank(query, deduped, config)
        if reranked.degraded and reranked.reason:
            observer.record_degraded(reranked.reason)

        assembler = ContextAssembler(
            max_results=config.max_results,
            source_caps=config.source_caps,
            snippet_length=config.snippet_length,
        )
        with observer.stage(PipelineStage.ASSEMBLY):
            screened = self._guard.screen(query.scope, reranked.candidates)
            result = assembler.assemble(query.query_id, query.text, screened, metrics)

        observer.log_retrieval_complete(result)
        return result
