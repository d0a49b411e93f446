"""Retrieval Models.

Value objects for the fan-out retrieval pipeline:
- Query / TenantScope / QueryOverrides (ingress)
- Candidate -> FusedCandidate -> RerankedCandidate (per-stage wrappers)
- Citation / RetrievalMetrics / RetrievalResult (egress)

Each stage wraps the previous stage's object instead of mutating it, so the
original adapter output stays inspectable for audit.

Pattern: Value Objects (immutable data carriers)
Anti-Pattern: No mutable default arguments (AP-1.5)
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from fanout_rag.core.constants import (
    DEFAULT_PIPELINE_DEADLINE,
    INTERNAL_METADATA_PREFIX,
)
from fanout_rag.schemas.fingerprint import compute_fingerprint


# =============================================================================
# Enums
# =============================================================================


class SourceType(str, Enum):
    """Closed set of retrieval source kinds."""

    VECTOR_STORE = "vector_store"
    FULL_TEXT = "full_text"
    GRAPH = "graph"
    LIVE_CONNECTOR = "live_connector"


class ScoreSemantics(str, Enum):
    """How an adapter's raw scores should be read.

    SIMILARITY is a bounded [0, 1] similarity (higher is better). RANK is a
    rank position and GRAPH_DEPTH a hop count; for both, lower is better.
    """

    SIMILARITY = "similarity"
    RANK = "rank"
    GRAPH_DEPTH = "graph_depth"

    @property
    def higher_is_better(self) -> bool:
        return self is ScoreSemantics.SIMILARITY


class FusionStrategy(str, Enum):
    """Score fusion algorithm."""

    RRF = "rrf"
    WEIGHTED = "weighted"


class RerankerKind(str, Enum):
    """Second-pass reranking variant."""

    CROSS_ENCODER = "cross_encoder"
    MMR = "mmr"
    NONE = "none"


class PipelineStage(str, Enum):
    """Stages recorded in a candidate's provenance chain."""

    RETRIEVE = "retrieve"
    ISOLATION = "isolation"
    FUSION = "fusion"
    DEDUP = "dedup"
    RERANK = "rerank"
    ASSEMBLY = "assembly"


class AdapterStatus(str, Enum):
    """Outcome of one adapter invocation."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# =============================================================================
# Provenance
# =============================================================================


@dataclass(frozen=True)
class ProvenanceStep:
    """One processing step a candidate passed through.

    Attributes:
        stage: Pipeline stage that produced the step.
        actor: Component (adapter name, strategy name) that acted.
        detail: Free-text detail, e.g. rank or merge information.
    """

    stage: PipelineStage
    actor: str
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage.value, "actor": self.actor, "detail": self.detail}


def merge_provenance(
    primary: Iterable[ProvenanceStep],
    *others: Iterable[ProvenanceStep],
) -> tuple[ProvenanceStep, ...]:
    """Concatenate provenance chains, dropping exact repeats, keeping order."""
    seen: set[ProvenanceStep] = set()
    merged: list[ProvenanceStep] = []
    for chain in (primary, *others):
        for step in chain:
            if step not in seen:
                seen.add(step)
                merged.append(step)
    return tuple(merged)


# =============================================================================
# Ingress
# =============================================================================


@dataclass(frozen=True)
class TenantScope:
    """Tenant identifier plus the permission strings the caller presented."""

    tenant_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", frozenset(self.permissions))

    def covers(self, required: Iterable[str]) -> bool:
        """True when every required permission was presented."""
        return not self.missing(required)

    def missing(self, required: Iterable[str]) -> frozenset[str]:
        """Required permissions the caller did not present."""
        return frozenset(required) - self.permissions


@dataclass(frozen=True)
class QueryOverrides:
    """Per-request overrides of the deployment configuration.

    Attributes:
        enabled_sources: Restrict dispatch to these source types.
        disabled_sources: Never dispatch to these source types.
        reranker: Reranker variant for this query.
        max_results: Total result cap.
        source_caps: Per-source-type result caps.
        fusion_weights: Per-source-type weights for weighted fusion.
        mmr_lambda: MMR relevance/diversity trade-off.
    """

    enabled_sources: frozenset[SourceType] | None = None
    disabled_sources: frozenset[SourceType] = field(default_factory=frozenset)
    reranker: RerankerKind | None = None
    max_results: int | None = None
    source_caps: Mapping[SourceType, int] | None = None
    fusion_weights: Mapping[SourceType, float] | None = None
    mmr_lambda: float | None = None

    def __post_init__(self) -> None:
        if self.enabled_sources is not None:
            object.__setattr__(self, "enabled_sources", frozenset(self.enabled_sources))
        object.__setattr__(self, "disabled_sources", frozenset(self.disabled_sources))


@dataclass(frozen=True)
class Query:
    """Immutable retrieval request.

    ``deadline`` and ``created_at`` are ``time.monotonic()`` readings; use
    :meth:`create` to derive the deadline from a latency budget.
    """

    text: str
    tenant_id: str
    scope: TenantScope
    deadline: float
    expanded_queries: tuple[str, ...] = ()
    filters: frozenset[str] = field(default_factory=frozenset)
    overrides: QueryOverrides = field(default_factory=QueryOverrides)
    query_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        object.__setattr__(self, "expanded_queries", tuple(self.expanded_queries))
        object.__setattr__(self, "filters", frozenset(self.filters))

    @classmethod
    def create(
        cls,
        text: str,
        scope: TenantScope,
        budget_seconds: float = DEFAULT_PIPELINE_DEADLINE,
        **kwargs: Any,
    ) -> Query:
        """Build a query whose deadline is ``budget_seconds`` from now."""
        now = time.monotonic()
        return cls(
            text=text,
            tenant_id=kwargs.pop("tenant_id", scope.tenant_id),
            scope=scope,
            deadline=now + budget_seconds,
            created_at=now,
            **kwargs,
        )

    @property
    def search_strings(self) -> tuple[str, ...]:
        """Raw text followed by expansions, blanks and repeats removed."""
        seen: list[str] = []
        for text in (self.text, *self.expanded_queries):
            text = text.strip()
            if text and text not in seen:
                seen.append(text)
        return tuple(seen)

    def remaining(self, now: float | None = None) -> float:
        """Seconds left before the deadline (never negative)."""
        now = time.monotonic() if now is None else now
        return max(0.0, self.deadline - now)

    def expired(self, now: float | None = None) -> bool:
        return self.remaining(now) <= 0.0


# =============================================================================
# Candidates
# =============================================================================


@dataclass(frozen=True)
class Candidate:
    """One piece of content as returned by a source adapter.

    The fingerprint is derived from content and key metadata when the adapter
    does not supply one, and a RETRIEVE provenance step is seeded when the
    chain is empty.
    """

    content_id: str
    source_type: SourceType
    score: float
    adapter: str
    content: str
    tenant_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    provenance: tuple[ProvenanceStep, ...] = ()
    fingerprint: str = ""
    required_permissions: frozenset[str] = field(default_factory=frozenset)
    embedding: tuple[float, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "required_permissions", frozenset(self.required_permissions))
        object.__setattr__(self, "provenance", tuple(self.provenance))
        if self.embedding is not None:
            object.__setattr__(self, "embedding", tuple(float(v) for v in self.embedding))
        if not self.fingerprint:
            object.__setattr__(
                self, "fingerprint", compute_fingerprint(self.content, self.metadata)
            )
        if not self.provenance:
            object.__setattr__(
                self,
                "provenance",
                (ProvenanceStep(PipelineStage.RETRIEVE, self.adapter),),
            )

    @property
    def title(self) -> str:
        return str(self.metadata.get("title", ""))

    def with_provenance(self, *steps: ProvenanceStep) -> Candidate:
        """Copy of this candidate with steps appended to its provenance."""
        return replace(self, provenance=(*self.provenance, *steps))


@dataclass(frozen=True)
class FusedCandidate:
    """A candidate with a cross-adapter comparable score.

    Attributes:
        candidate: Representative adapter candidate.
        fused_score: Score from the fusion strategy.
        adapters: Adapters that independently surfaced this content.
        arrived_at: Earliest monotonic arrival time among those adapters.
        provenance: Chain including the fusion step.
    """

    candidate: Candidate
    fused_score: float
    adapters: tuple[str, ...]
    arrived_at: float
    provenance: tuple[ProvenanceStep, ...]

    @property
    def fan_in(self) -> int:
        return len(self.adapters)

    @property
    def content_id(self) -> str:
        return self.candidate.content_id

    @property
    def fingerprint(self) -> str:
        return self.candidate.fingerprint

    @property
    def tenant_id(self) -> str:
        return self.candidate.tenant_id

    @property
    def source_type(self) -> SourceType:
        return self.candidate.source_type

    @property
    def content(self) -> str:
        return self.candidate.content


@dataclass(frozen=True)
class RerankedCandidate:
    """A fused candidate after the second-pass reranker.

    Attributes:
        fused: The fused candidate.
        rerank_score: Relevance used for the final order.
        score_origin: Which scorer produced ``rerank_score`` ("fusion",
            "cross_encoder"); confidences are normalized per origin.
        diversity_penalty: MMR max-similarity term at selection time.
        reranked: False for tail candidates and fallback order.
        provenance: Chain including the rerank step.
    """

    fused: FusedCandidate
    rerank_score: float
    score_origin: str
    provenance: tuple[ProvenanceStep, ...]
    diversity_penalty: float | None = None
    reranked: bool = True

    @property
    def candidate(self) -> Candidate:
        return self.fused.candidate

    @property
    def content_id(self) -> str:
        return self.fused.content_id

    @property
    def tenant_id(self) -> str:
        return self.fused.tenant_id

    @property
    def source_type(self) -> SourceType:
        return self.fused.source_type

    @property
    def fingerprint(self) -> str:
        return self.fused.fingerprint

    def to_dict(self) -> dict[str, Any]:
        """Serialize for egress; tenant-internal metadata is dropped."""
        candidate = self.candidate
        return {
            "content_id": candidate.content_id,
            "source_type": candidate.source_type.value,
            "adapter": candidate.adapter,
            "content": candidate.content,
            "raw_score": candidate.score,
            "fused_score": self.fused.fused_score,
            "rerank_score": self.rerank_score,
            "score_origin": self.score_origin,
            "diversity_penalty": self.diversity_penalty,
            "reranked": self.reranked,
            "adapters": list(self.fused.adapters),
            "metadata": public_metadata(candidate.metadata),
            "provenance": [step.to_dict() for step in self.provenance],
        }


def public_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Metadata with tenant-internal keys removed."""
    return {
        key: value
        for key, value in metadata.items()
        if not str(key).startswith(INTERNAL_METADATA_PREFIX)
    }


# =============================================================================
# Dispatch Outcome
# =============================================================================


@dataclass(frozen=True)
class AdapterOutcome:
    """What one adapter contributed to a dispatch.

    ``candidates`` are already filtered by the tenant isolation guard and
    keep the adapter's own ranked order.
    """

    adapter: str
    source_type: SourceType
    score_semantics: ScoreSemantics
    status: AdapterStatus
    candidates: tuple[Candidate, ...] = ()
    latency_ms: float = 0.0
    arrived_at: float = 0.0
    error: str | None = None
    rejected: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in (AdapterStatus.OK, AdapterStatus.PARTIAL)


# =============================================================================
# Egress
# =============================================================================


@dataclass(frozen=True)
class Citation:
    """Citation for one emitted candidate.

    Attributes:
        source_type: Origin source type.
        source_id: Candidate content id.
        title: Human-readable title when known.
        url: Source URL when known.
        page: Page or section marker when known.
        snippet: Truncated content preview.
        confidence: Normalized [0, 1] confidence.
        provenance: Full provenance chain.
        footnote_number: 1-based position in the result.
    """

    source_type: SourceType
    source_id: str
    title: str
    snippet: str
    confidence: float
    provenance: tuple[ProvenanceStep, ...]
    url: str = ""
    page: str = ""
    footnote_number: int | None = None

    @property
    def descriptor(self) -> str:
        """e.g. ``[full_text] Intro to Backprop, p. 4 <https://...>``."""
        parts = [f"[{self.source_type.value}]", self.title or self.source_id]
        text = " ".join(parts)
        if self.page:
            text = f"{text}, p. {self.page}"
        if self.url:
            text = f"{text} <{self.url}>"
        return text

    def to_footnote(self) -> str:
        number = self.footnote_number or 1
        return f"[^{number}]: {self.descriptor}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "descriptor": self.descriptor,
            "title": self.title,
            "url": self.url,
            "page": self.page,
            "snippet": self.snippet,
            "confidence": self.confidence,
            "footnote_number": self.footnote_number,
            "provenance": [step.to_dict() for step in self.provenance],
        }


@dataclass
class RetrievalMetrics:
    """Aggregate metrics for one pipeline invocation."""

    stage_latency_ms: dict[str, float] = field(default_factory=dict)
    source_counts: dict[str, int] = field(default_factory=dict)
    adapter_status: dict[str, str] = field(default_factory=dict)
    adapter_latency_ms: dict[str, float] = field(default_factory=dict)
    rejected_candidates: int = 0
    fusion_strategy: str = ""
    reranker: str = ""
    degraded: bool = False
    degraded_reasons: list[str] = field(default_factory=list)

    def mark_degraded(self, reason: str) -> None:
        self.degraded = True
        if reason not in self.degraded_reasons:
            self.degraded_reasons.append(reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_latency_ms": dict(self.stage_latency_ms),
            "source_counts": dict(self.source_counts),
            "adapter_status": dict(self.adapter_status),
            "adapter_latency_ms": dict(self.adapter_latency_ms),
            "rejected_candidates": self.rejected_candidates,
            "fusion_strategy": self.fusion_strategy,
            "reranker": self.reranker,
            "degraded": self.degraded,
            "degraded_reasons": list(self.degraded_reasons),
        }


@dataclass
class RetrievalResult:
    """Final ordered result handed to the generation step."""

    query_id: str
    query: str
    candidates: list[RerankedCandidate] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    metrics: RetrievalMetrics = field(default_factory=RetrievalMetrics)

    def __post_init__(self) -> None:
        if not self.metrics.source_counts and self.candidates:
            self.metrics.source_counts = self._calculate_source_counts()

    def _calculate_source_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.candidates:
            key = item.source_type.value
            counts[key] = counts.get(key, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    def get_by_source(self, source_type: SourceType) -> list[RerankedCandidate]:
        return [c for c in self.candidates if c.source_type == source_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "query": self.query,
            "results": [c.to_dict() for c in self.candidates],
            "citations": [c.to_dict() for c in self.citations],
            "metrics": self.metrics.to_dict(),
        }
