"""Fan-out retrieval pipeline stages."""

from fanout_rag.retrieval.assembler import ContextAssembler
from fanout_rag.retrieval.config import PipelineConfig
from fanout_rag.retrieval.deduplicator import Deduplicator
from fanout_rag.retrieval.dispatcher import DispatchResult, FanOutDispatcher
from fanout_rag.retrieval.fusion import FusionEngine
from fanout_rag.retrieval.observability import PipelineObserver
from fanout_rag.retrieval.pipeline import RetrievalPipeline
from fanout_rag.retrieval.reranker import Reranker, RerankOutcome
from fanout_rag.retrieval.tenant_guard import TenantIsolationGuard

__all__ = [
    "ContextAssembler",
    "Deduplicator",
    "DispatchResult",
    "FanOutDispatcher",
    "FusionEngine",
    "PipelineConfig",
    "PipelineObserver",
    "RerankOutcome",
    "Reranker",
    "RetrievalPipeline",
    "TenantIsolationGuard",
]
