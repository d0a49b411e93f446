"""Search Service HTTP Client.

Async client for a remote vector / full-text search service. Implements the
SearchCapability protocol so it can back a KnowledgeStoreAdapter:

    POST /v1/search
    {"query": str, "tenant_id": str, "limit": int, "mode": "vector"|"text",
     "categories": [str, ...]}
    -> {"results": [{"id", "content", "score", "tenant_id", "metadata",
                     "required_permissions", "embedding"}, ...]}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from fanout_rag.adapters.protocols import StoreHit
from fanout_rag.core.constants import DEFAULT_ADAPTER_TIMEOUT, ENDPOINT_SEARCH
from fanout_rag.core.exceptions import AdapterFailureError, AdapterTimeoutError


logger = logging.getLogger(__name__)

SEARCH_MODES: frozenset[str] = frozenset({"vector", "text"})


class SearchServiceClient:
    """HTTP search backend (one per mode).

    Attributes:
        base_url: Base URL of the search service
        mode: "vector" or "text"
        timeout: Default request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        mode: str = "vector",
        timeout: float = DEFAULT_ADAPTER_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unknown search mode '{mode}'")
        self.base_url = base_url
        self.mode = mode
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return f"search-service:{self.mode}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
            await asyncio.sleep(0)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def search(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> list[StoreHit]:
        """Run one search request.

        Raises:
            AdapterTimeoutError: Request exceeded ``timeout``.
            AdapterFailureError: HTTP error or malformed response.
        """
        client = await self._get_client()
        body = {
            "query": text,
            "tenant_id": tenant_id,
            "limit": limit,
            "mode": self.mode,
            "categories": sorted(categories),
        }
        try:
            response = await client.post(ENDPOINT_SEARCH, json=body, timeout=timeout)
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise AdapterTimeoutError(
                f"Search request timed out after {timeout:.3f}s",
                adapter=self.name,
                timeout_seconds=timeout,
                cause=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AdapterFailureError(
                f"Search request failed: {e}", adapter=self.name, cause=e
            ) from e

        return [self._to_hit(item) for item in payload.get("results", [])]

    def _to_hit(self, item: dict[str, Any]) -> StoreHit:
        try:
            embedding = item.get("embedding")
            return StoreHit(
                id=str(item["id"]),
                content=str(item.get("content", "")),
                score=float(item["score"]),
                tenant_id=str(item["tenant_id"]),
                metadata=dict(item.get("metadata") or {}),
                required_permissions=frozenset(item.get("required_permissions") or ()),
                embedding=tuple(embedding) if embedding else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AdapterFailureError(
                f"Malformed search hit: {e}", adapter=self.name, cause=e
            ) from e
