"""Health check API routes.

GET /health reports the adapters the pipeline will dispatch to; GET
/health/live is a bare liveness probe. Both read ``app.state`` only, so
they answer even while the pipeline is not wired yet.
"""

from __future__ import annotations

import time
from collections import Counter
from datetime import UTC, datetime
from enum import Enum

from fastapi import APIRouter, FastAPI, Request
from pydantic import BaseModel, Field

from fanout_rag import __version__
from fanout_rag.core.constants import SERVICE_NAME


router = APIRouter(prefix="/health", tags=["Health"])


def _now() -> str:
    return datetime.now(UTC).isoformat()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AdapterHealth(BaseModel):
    """One registered adapter and whether dispatch will call it."""

    name: str
    source_type: str
    enabled: bool


class HealthResponse(BaseModel):
    """Service status.

    ``unhealthy`` means no pipeline is wired, ``degraded`` means a pipeline
    exists but every adapter is disabled, so each query returns empty.
    """

    status: HealthStatus
    service: str = SERVICE_NAME
    version: str = __version__
    timestamp: str = Field(default_factory=_now)
    uptime_seconds: float | None = None
    adapters: list[AdapterHealth] = Field(default_factory=list)
    enabled_by_source: dict[str, int] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    alive: bool = True
    timestamp: str = Field(default_factory=_now)


def mark_started(app: FastAPI) -> None:
    """Record the startup instant used for ``uptime_seconds``."""
    app.state.started_at = time.monotonic()


def _uptime(app: FastAPI) -> float | None:
    started_at = getattr(app.state, "started_at", None)
    return None if started_at is None else round(time.monotonic() - started_at, 3)


@router.get("", response_model=HealthResponse, summary="Health check")
async def health_check(request: Request) -> HealthResponse:
    app = request.app
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        return HealthResponse(status=HealthStatus.UNHEALTHY, uptime_seconds=_uptime(app))

    adapters = [
        AdapterHealth(
            name=adapter.descriptor.name,
            source_type=adapter.descriptor.source_type.value,
            enabled=adapter.descriptor.enabled,
        )
        for adapter in pipeline.adapters
    ]
    enabled = Counter(a.source_type for a in adapters if a.enabled)
    return HealthResponse(
        status=HealthStatus.HEALTHY if enabled else HealthStatus.DEGRADED,
        uptime_seconds=_uptime(app),
        adapters=adapters,
        enabled_by_source=dict(enabled),
    )


@router.get("/live", response_model=LivenessResponse, summary="Liveness check")
async def liveness_check() -> LivenessResponse:
    return LivenessResponse()
