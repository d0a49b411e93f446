"""Source adapters: protocol, registry and concrete implementations."""

from fanout_rag.adapters.fake import FakeSourceAdapter
from fanout_rag.adapters.protocols import (
    AdapterDescriptor,
    AdapterResponse,
    EpisodeCapability,
    GraphCapability,
    SearchCapability,
    SourceAdapterProtocol,
    StoreHit,
    TaxonomyCapability,
)
from fanout_rag.adapters.registry import AdapterRegistry
from fanout_rag.adapters.store import KnowledgeStoreAdapter

__all__ = [
    "AdapterDescriptor",
    "AdapterRegistry",
    "AdapterResponse",
    "EpisodeCapability",
    "FakeSourceAdapter",
    "GraphCapability",
    "KnowledgeStoreAdapter",
    "SearchCapability",
    "SourceAdapterProtocol",
    "StoreHit",
    "TaxonomyCapability",
]
