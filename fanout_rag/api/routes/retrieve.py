"""Retrieval API route.

POST /v1/retrieve runs the fan-out pipeline for one query and returns the
ordered results, citations and run metrics.

The pipeline is created at startup (see :mod:`fanout_rag.main`) and read
from ``app.state.pipeline``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator

from fanout_rag.retrieval.pipeline import RetrievalPipeline
from fanout_rag.schemas.retrieval_models import (
    Query,
    QueryOverrides,
    RerankerKind,
    SourceType,
    TenantScope,
)


router = APIRouter(
    prefix="/v1",
    tags=["Retrieval"],
)


# =============================================================================
# Request / Response Models
# =============================================================================


class OverridesRequest(BaseModel):
    """Per-request overrides of the deployment configuration."""

    enabled_sources: list[SourceType] | None = Field(
        default=None,
        description="Only dispatch to these source types",
    )
    disabled_sources: list[SourceType] = Field(
        default_factory=list,
        description="Never dispatch to these source types",
    )
    reranker: RerankerKind | None = None
    max_results: int | None = Field(default=None, ge=1, le=200)
    source_caps: dict[SourceType, int] | None = None
    fusion_weights: dict[SourceType, float] | None = None
    mmr_lambda: float | None = Field(default=None, ge=0.0, le=1.0)

    def to_overrides(self) -> QueryOverrides:
        return QueryOverrides(
            enabled_sources=(
                frozenset(self.enabled_sources) if self.enabled_sources is not None else None
            ),
            disabled_sources=frozenset(self.disabled_sources),
            reranker=self.reranker,
            max_results=self.max_results,
            source_caps=self.source_caps,
            fusion_weights=self.fusion_weights,
            mmr_lambda=self.mmr_lambda,
        )


class RetrieveRequest(BaseModel):
    """Request body for POST /v1/retrieve."""

    tenant_id: str = Field(..., min_length=1, description="Tenant the query runs for")
    permissions: list[str] = Field(
        default_factory=list,
        description="Permission strings presented by the caller",
    )
    text: str = Field(default="", description="Raw query text")
    expanded_queries: list[str] = Field(
        default_factory=list,
        description="Pre-expanded search strings",
    )
    filters: list[str] = Field(
        default_factory=list,
        description="Taxonomy/category filters",
    )
    overrides: OverridesRequest = Field(default_factory=OverridesRequest)
    budget_ms: int | None = Field(
        default=None,
        gt=0,
        le=30_000,
        description="End-to-end latency budget (defaults to the configured deadline)",
    )

    @model_validator(mode="after")
    def _require_query_text(self) -> RetrieveRequest:
        if not self.text.strip() and not any(q.strip() for q in self.expanded_queries):
            raise ValueError("either text or expanded_queries must be non-empty")
        return self


class RetrieveResponse(BaseModel):
    """Serialized RetrievalResult."""

    query_id: str
    query: str
    results: list[dict[str, Any]] = Field(default_factory=list)
    citations: list[dict[str, Any]] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Dependencies
# =============================================================================


def get_pipeline(request: Request) -> RetrievalPipeline:
    """Pipeline built during application startup."""
    pipeline: RetrievalPipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Retrieval pipeline not initialized")
    return pipeline


def build_query(body: RetrieveRequest, pipeline: RetrievalPipeline) -> Query:
    """Translate the request body into an immutable Query."""
    budget = (
        body.budget_ms / 1000 if body.budget_ms is not None else pipeline.config.pipeline_deadline
    )
    text = body.text.strip() or next(q for q in body.expanded_queries if q.strip())
    return Query.create(
        text,
        TenantScope(tenant_id=body.tenant_id, permissions=frozenset(body.permissions)),
        budget,
        expanded_queries=tuple(body.expanded_queries),
        filters=frozenset(body.filters),
        overrides=body.overrides.to_overrides(),
    )


# =============================================================================
# API Endpoints
# =============================================================================


@router.post(
    "/retrieve",
    response_model=RetrieveResponse,
    summary="Retrieve context",
    description="Fan a query out to every permitted source and return fused, "
    "deduplicated, reranked results with citations.",
)
async def retrieve(
    body: RetrieveRequest,
    pipeline: RetrievalPipeline = Depends(get_pipeline),
) -> RetrieveResponse:
    """Run the retrieval pipeline.

    AuthorizationDeniedError is turned into a 403 by the registered error
    handlers; an empty result is a normal 200.
    """
    result = await pipeline.retrieve(build_query(body, pipeline))
    return RetrieveResponse.model_validate(result.to_dict())
