"""
Main entry point for the fanout-rag service.

Creates the FastAPI application instance for uvicorn:

    uvicorn fanout_rag.main:app --port 8090

Startup wiring: settings -> adapter registry -> retrieval pipeline, stored
on ``app.state.pipeline``. HTTP clients are owned by the app and closed on
shutdown.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fanout_rag import __version__
from fanout_rag.adapters.protocols import AdapterDescriptor
from fanout_rag.adapters.registry import AdapterRegistry
from fanout_rag.adapters.store import KnowledgeStoreAdapter
from fanout_rag.api.error_handlers import register_error_handlers
from fanout_rag.api.routes.health import router as health_router
from fanout_rag.api.routes.health import mark_started
from fanout_rag.api.routes.retrieve import router as retrieve_router
from fanout_rag.clients.rerank_service import HttpCrossEncoderClient
from fanout_rag.clients.search_service import SearchServiceClient
from fanout_rag.core.config import Settings, get_settings
from fanout_rag.core.logging import configure_logging, get_logger
from fanout_rag.retrieval.config import PipelineConfig
from fanout_rag.retrieval.pipeline import RetrievalPipeline
from fanout_rag.schemas.retrieval_models import (
    RerankerKind,
    ScoreSemantics,
    SourceType,
)


# Configure structured logging on module load
configure_logging()
logger = get_logger(__name__)

VECTOR_ADAPTER = "vector"
FULL_TEXT_ADAPTER = "full_text"


@dataclass
class ServiceResources:
    """Clients created at startup that must be closed at shutdown."""

    search_clients: list[SearchServiceClient] = field(default_factory=list)
    cross_encoder: HttpCrossEncoderClient | None = None

    async def close(self) -> None:
        for client in self.search_clients:
            await client.close()
        if self.cross_encoder is not None:
            await self.cross_encoder.close()


def build_registry(settings: Settings, resources: ServiceResources) -> AdapterRegistry:
    """Register the search-service backed adapters.

    Graph and live-connector adapters are registered the same way by
    deployments that have those backends, using KnowledgeStoreAdapter with a
    graph or episode capability.
    """
    registry = AdapterRegistry()

    def search_adapter(name: str, source_type: SourceType, mode: str) -> KnowledgeStoreAdapter:
        client = SearchServiceClient(
            settings.search_service_url,
            mode=mode,
            timeout=settings.adapter_timeout_seconds,
        )
        resources.search_clients.append(client)
        return KnowledgeStoreAdapter(
            AdapterDescriptor(
                name=name,
                source_type=source_type,
                score_semantics=ScoreSemantics.SIMILARITY,
            ),
            search=client,
        )

    registry.register(
        VECTOR_ADAPTER,
        lambda: search_adapter(VECTOR_ADAPTER, SourceType.VECTOR_STORE, "vector"),
    )
    registry.register(
        FULL_TEXT_ADAPTER,
        lambda: search_adapter(FULL_TEXT_ADAPTER, SourceType.FULL_TEXT, "text"),
    )
    return registry


def build_pipeline(settings: Settings, resources: ServiceResources) -> RetrievalPipeline:
    """Wire the pipeline from settings."""
    config = PipelineConfig.from_settings(settings)
    registry = build_registry(settings, resources)
    resources.cross_encoder = HttpCrossEncoderClient(
        settings.rerank_service_url,
        timeout=settings.rerank_timeout_seconds,
    )
    pipeline = RetrievalPipeline.from_registry(
        registry,
        config,
        cross_encoder=resources.cross_encoder,
    )
    logger.info(
        "pipeline_ready",
        adapters=[a.descriptor.name for a in pipeline.adapters],
        fusion=config.fusion_strategy.value,
        reranker=config.reranker.value,
        cross_encoder_default=config.reranker is RerankerKind.CROSS_ENCODER,
    )
    return pipeline


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    On startup: build the adapter registry and the retrieval pipeline
    On shutdown: close HTTP clients
    """
    settings = get_settings()
    logger.info("Starting fanout-rag service", port=settings.port)
    mark_started(app)

    resources = ServiceResources()
    app.state.pipeline = build_pipeline(settings, resources)

    yield

    logger.info("Shutting down fanout-rag service")
    await resources.close()
    app.state.pipeline = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Registers:
    - retrieve_router: POST /v1/retrieve
    - health_router: GET /health, /health/live
    """
    app = FastAPI(
        title="Fan-out RAG Retrieval Service",
        description="Multi-source retrieval with fusion, deduplication, reranking "
        "and per-tenant isolation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(retrieve_router)
    app.include_router(health_router)

    return app


# Create application instance
app = create_app()
