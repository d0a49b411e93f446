"""Retrieval Pipeline Constants.

All magic numbers and shared strings for the retrieval pipeline.

Anti-Patterns Avoided (per CODING_PATTERNS_ANALYSIS.md):
- S1192: All strings/numbers as constants
- #2.2: Full type annotations
"""

from __future__ import annotations


# =============================================================================
# Fusion Constants
# =============================================================================

DEFAULT_RRF_K: int = 60
"""Reciprocal Rank Fusion damping constant.

Higher values flatten the contribution curve so that long-tail ranks
matter more relative to the top positions.
"""

DEFAULT_VECTOR_WEIGHT: float = 0.7
"""Weighted-fusion weight for vector-store candidates."""

DEFAULT_FULL_TEXT_WEIGHT: float = 0.3
"""Weighted-fusion weight for full-text candidates."""

# =============================================================================
# Reranker Constants
# =============================================================================

DEFAULT_RERANK_TOP_N: int = 50
"""Number of fused candidates handed to the second-pass reranker."""

DEFAULT_MMR_LAMBDA: float = 0.5
"""MMR trade-off: 1.0 is pure relevance, 0.0 is pure diversity."""

DEFAULT_RERANK_BATCH_SIZE: int = 16
"""Pairs per request to the cross-encoder service."""

# =============================================================================
# Output Constants
# =============================================================================

DEFAULT_MAX_RESULTS: int = 10
DEFAULT_SNIPPET_LENGTH: int = 280
SNIPPET_ELLIPSIS: str = "..."

INTERNAL_METADATA_PREFIX: str = "_"
"""Metadata keys with this prefix are tenant-internal and never emitted."""

# =============================================================================
# Time Budget Constants (seconds)
# =============================================================================

DEFAULT_PIPELINE_DEADLINE: float = 1.5
DEFAULT_DISPATCH_BUDGET: float = 1.0
DEFAULT_ADAPTER_TIMEOUT: float = 0.8
DEFAULT_RERANK_TIMEOUT: float = 0.5

ASSEMBLY_RESERVE: float = 0.02
"""Budget kept back from the reranker for assembly and serialization."""

ADAPTER_DEADLINE_MARGIN: float = 0.01
"""Adapters are told to finish this long before the dispatcher stops waiting."""

# =============================================================================
# Fingerprint Constants
# =============================================================================

FINGERPRINT_KEY_FIELDS: tuple[str, ...] = ("document_id",)
"""Metadata keys folded into the content fingerprint when present."""

# =============================================================================
# Permission Constants
# =============================================================================

TENANT_PLACEHOLDER: str = "{tenant}"
DEFAULT_READ_PERMISSION: str = "{tenant}:read"

# =============================================================================
# Environment
# =============================================================================

ENV_PREFIX: str = "FANOUT_RAG_"
SERVICE_NAME: str = "fanout-rag"
ENDPOINT_RERANK: str = "/v1/rerank"
ENDPOINT_SEARCH: str = "/v1/search"
