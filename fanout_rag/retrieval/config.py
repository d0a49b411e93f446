"""Pipeline Configuration.

Frozen per-invocation view of the retrieval settings. Built once from
:class:`~fanout_rag.core.config.Settings` at startup and narrowed per query
with :meth:`PipelineConfig.with_overrides`.

Anti-Patterns Avoided (per CODING_PATTERNS_ANALYSIS.md):
- S1192: Uses constants from constants.py
- #2.2: Full type annotations
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from fanout_rag.core.constants import (
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_DISPATCH_BUDGET,
    DEFAULT_FULL_TEXT_WEIGHT,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MMR_LAMBDA,
    DEFAULT_PIPELINE_DEADLINE,
    DEFAULT_RERANK_BATCH_SIZE,
    DEFAULT_RERANK_TIMEOUT,
    DEFAULT_RERANK_TOP_N,
    DEFAULT_RRF_K,
    DEFAULT_SNIPPET_LENGTH,
    DEFAULT_VECTOR_WEIGHT,
)
from fanout_rag.core.exceptions import ConfigurationError
from fanout_rag.schemas.retrieval_models import (
    FusionStrategy,
    QueryOverrides,
    RerankerKind,
    SourceType,
)


if TYPE_CHECKING:
    from fanout_rag.core.config import Settings


E = TypeVar("E", bound=Enum)


def _default_weights() -> dict[SourceType, float]:
    return {
        SourceType.VECTOR_STORE: DEFAULT_VECTOR_WEIGHT,
        SourceType.FULL_TEXT: DEFAULT_FULL_TEXT_WEIGHT,
    }


def parse_enum(enum_cls: type[E], value: str | E, field_name: str) -> E:
    """Parse an enum member from its value, raising ConfigurationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise ConfigurationError(
            f"Invalid {field_name} '{value}' (expected one of: {allowed})",
            field=field_name,
            value=value,
        ) from e


def parse_source_mapping(
    raw: Mapping[str, float] | Mapping[SourceType, float],
    field_name: str,
) -> dict[SourceType, float]:
    return {parse_enum(SourceType, key, field_name): value for key, value in raw.items()}


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for one retrieval pipeline run.

    Attributes:
        fusion_strategy: The single configured fusion algorithm.
        rrf_k: RRF damping constant.
        fusion_weights: Per-source weights for weighted fusion.
        reranker: Default reranker variant.
        mmr_lambda: MMR relevance/diversity trade-off.
        rerank_top_n: Head size handed to the reranker.
        rerank_batch_size: Pairs per cross-encoder request.
        max_results: Total result cap.
        source_caps: Per-source-type result caps (absent = uncapped).
        snippet_length: Citation preview length.
        pipeline_deadline: End-to-end budget for queries built by the service.
        dispatch_budget: Max time the dispatcher waits for adapters.
        adapter_timeout: Per-adapter soft timeout.
        rerank_timeout: Cross-encoder budget (further capped by the deadline).
        enabled_adapters: Adapter names to dispatch to (empty = all).
    """

    fusion_strategy: FusionStrategy = FusionStrategy.RRF
    rrf_k: int = DEFAULT_RRF_K
    fusion_weights: Mapping[SourceType, float] = field(default_factory=_default_weights)
    reranker: RerankerKind = RerankerKind.NONE
    mmr_lambda: float = DEFAULT_MMR_LAMBDA
    rerank_top_n: int = DEFAULT_RERANK_TOP_N
    rerank_batch_size: int = DEFAULT_RERANK_BATCH_SIZE
    max_results: int = DEFAULT_MAX_RESULTS
    source_caps: Mapping[SourceType, int] = field(default_factory=dict)
    snippet_length: int = DEFAULT_SNIPPET_LENGTH
    pipeline_deadline: float = DEFAULT_PIPELINE_DEADLINE
    dispatch_budget: float = DEFAULT_DISPATCH_BUDGET
    adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT
    rerank_timeout: float = DEFAULT_RERANK_TIMEOUT
    enabled_adapters: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if self.rrf_k < 1:
            raise ConfigurationError("rrf_k must be >= 1", field="rrf_k", value=self.rrf_k)
        if not 0.0 <= self.mmr_lambda <= 1.0:
            raise ConfigurationError(
                "mmr_lambda must be within [0, 1]", field="mmr_lambda", value=self.mmr_lambda
            )
        for name in ("rerank_top_n", "rerank_batch_size", "max_results", "snippet_length"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1", field=name, value=getattr(self, name))
        for source, cap in self.source_caps.items():
            if cap < 0:
                raise ConfigurationError(
                    f"source cap for {source.value} must be >= 0", field="source_caps", value=cap
                )
        if any(weight < 0 for weight in self.fusion_weights.values()):
            raise ConfigurationError(
                "fusion weights must be non-negative",
                field="fusion_weights",
                value=dict(self.fusion_weights),
            )
        for name in ("pipeline_deadline", "dispatch_budget", "adapter_timeout", "rerank_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0", field=name, value=getattr(self, name))

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        """Create a PipelineConfig from application settings."""
        return cls(
            fusion_strategy=parse_enum(FusionStrategy, settings.fusion_strategy, "fusion_strategy"),
            rrf_k=settings.rrf_k,
            fusion_weights=parse_source_mapping(settings.fusion_weights, "fusion_weights"),
            reranker=parse_enum(RerankerKind, settings.reranker, "reranker"),
            mmr_lambda=settings.mmr_lambda,
            rerank_top_n=settings.rerank_top_n,
            rerank_batch_size=settings.rerank_batch_size,
            max_results=settings.max_results,
            source_caps={
                parse_enum(SourceType, key, "source_caps"): int(cap)
                for key, cap in settings.source_caps.items()
            },
            snippet_length=settings.snippet_length,
            pipeline_deadline=settings.pipeline_deadline_seconds,
            dispatch_budget=settings.dispatch_budget_seconds,
            adapter_timeout=settings.adapter_timeout_seconds,
            rerank_timeout=settings.rerank_timeout_seconds,
            enabled_adapters=tuple(settings.enabled_adapters),
        )

    def with_overrides(self, overrides: QueryOverrides) -> PipelineConfig:
        """Apply per-query overrides, returning a new config."""
        changes: dict[str, object] = {}
        if overrides.reranker is not None:
            changes["reranker"] = overrides.reranker
        if overrides.max_results is not None:
            changes["max_results"] = overrides.max_results
        if overrides.source_caps is not None:
            changes["source_caps"] = {**self.source_caps, **overrides.source_caps}
        if overrides.fusion_weights is not None:
            changes["fusion_weights"] = dict(overrides.fusion_weights)
        if overrides.mmr_lambda is not None:
            changes["mmr_lambda"] = overrides.mmr_lambda
        if not changes:
            return self
        return replace(self, **changes)  # type: ignore[arg-type]
