"""Application configuration using Pydantic Settings.

Follows the Pydantic Settings pattern: every value can be supplied through
an environment variable with the FANOUT_RAG_ prefix (or a .env file).
Dict and list settings are read as JSON, e.g.
``FANOUT_RAG_SOURCE_CAPS='{"graph": 3}'``.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

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
    ENV_PREFIX,
    SERVICE_NAME,
)


class Settings(BaseSettings):
    """Service and pipeline settings loaded from environment variables."""

    # Service configuration
    service_name: str = SERVICE_NAME
    port: int = 8090
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Adapters
    enabled_adapters: list[str] = Field(
        default_factory=list,
        description="Registered adapter names to dispatch to (empty = all registered)",
    )
    search_service_url: str = Field(
        default="http://localhost:8081",
        description="Remote vector/full-text search service URL",
    )

    # Fusion
    fusion_strategy: str = Field(default="rrf", description="'rrf' or 'weighted'")
    rrf_k: int = Field(default=DEFAULT_RRF_K, ge=1)
    fusion_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "vector_store": DEFAULT_VECTOR_WEIGHT,
            "full_text": DEFAULT_FULL_TEXT_WEIGHT,
        },
        description="Per-source-type weights for weighted fusion",
    )

    # Reranking
    reranker: str = Field(default="none", description="'cross_encoder', 'mmr' or 'none'")
    mmr_lambda: float = Field(default=DEFAULT_MMR_LAMBDA, ge=0.0, le=1.0)
    rerank_top_n: int = Field(default=DEFAULT_RERANK_TOP_N, ge=1)
    rerank_batch_size: int = Field(default=DEFAULT_RERANK_BATCH_SIZE, ge=1)
    rerank_service_url: str = Field(
        default="http://localhost:8085",
        description="Cross-encoder scoring service URL",
    )

    # Output
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1)
    source_caps: dict[str, int] = Field(
        default_factory=dict,
        description="Per-source-type output caps",
    )
    snippet_length: int = Field(default=DEFAULT_SNIPPET_LENGTH, ge=16)

    # Time budgets (seconds)
    pipeline_deadline_seconds: float = Field(default=DEFAULT_PIPELINE_DEADLINE, gt=0)
    dispatch_budget_seconds: float = Field(default=DEFAULT_DISPATCH_BUDGET, gt=0)
    adapter_timeout_seconds: float = Field(default=DEFAULT_ADAPTER_TIMEOUT, gt=0)
    rerank_timeout_seconds: float = Field(default=DEFAULT_RERANK_TIMEOUT, gt=0)

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
