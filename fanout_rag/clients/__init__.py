"""HTTP clients for external collaborators (search and rerank services)."""

from fanout_rag.clients.protocols import CrossEncoderProtocol
from fanout_rag.clients.rerank_service import FakeCrossEncoderClient, HttpCrossEncoderClient
from fanout_rag.clients.search_service import SearchServiceClient

__all__ = [
    "CrossEncoderProtocol",
    "FakeCrossEncoderClient",
    "HttpCrossEncoderClient",
    "SearchServiceClient",
]
