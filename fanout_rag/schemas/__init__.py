"""Value objects passed between pipeline stages."""

from fanout_rag.schemas.fingerprint import compute_fingerprint, normalize_content
from fanout_rag.schemas.retrieval_models import (
    AdapterOutcome,
    AdapterStatus,
    Candidate,
    Citation,
    FusedCandidate,
    FusionStrategy,
    PipelineStage,
    ProvenanceStep,
    Query,
    QueryOverrides,
    RerankedCandidate,
    RerankerKind,
    RetrievalMetrics,
    RetrievalResult,
    ScoreSemantics,
    SourceType,
    TenantScope,
)

__all__ = [
    "AdapterOutcome",
    "AdapterStatus",
    "Candidate",
    "Citation",
    "FusedCandidate",
    "FusionStrategy",
    "PipelineStage",
    "ProvenanceStep",
    "Query",
    "QueryOverrides",
    "RerankedCandidate",
    "RerankerKind",
    "RetrievalMetrics",
    "RetrievalResult",
    "ScoreSemantics",
    "SourceType",
    "TenantScope",
    "compute_fingerprint",
    "normalize_content",
]
