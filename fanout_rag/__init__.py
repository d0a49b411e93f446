"""fanout_rag - multi-source retrieval orchestration core.

Fans a query out to heterogeneous knowledge sources, fuses and deduplicates
the candidates, reranks the head of the list and assembles a
provenance-carrying, tenant-scoped result set for a downstream generator.
"""

__version__ = "0.1.0"
