"""Unit tests for SearchServiceClient.

Requests go through httpx.MockTransport; no network access.
"""

from __future__ import annotations

import json

import httpx
import pytest

from fanout_rag.adapters.protocols import SearchCapability, StoreHit
from fanout_rag.clients.search_service import SearchServiceClient
from fanout_rag.core.exceptions import AdapterFailureError, AdapterTimeoutError


BASE_URL = "http://search.test"


@pytest.fixture
def search_response() -> dict:
    return {
        "results": [
            {
                "id": "chunk-1",
                "content": "Backpropagation computes gradients layer by layer.",
                "score": 0.91,
                "tenant_id": "t1",
                "metadata": {"title": "Deep Learning, ch. 6", "page": 197},
                "required_permissions": ["t1:read"],
                "embedding": [0.1, 0.2],
            },
            {"id": 2, "content": "Gradient descent.", "score": "0.5", "tenant_id": "t1"},
        ]
    }


def _client(handler, mode: str = "vector") -> SearchServiceClient:
    return SearchServiceClient(BASE_URL, mode=mode, transport=httpx.MockTransport(handler))


class TestSearchServiceClient:
    def test_implements_search_capability(self) -> None:
        assert isinstance(SearchServiceClient(BASE_URL), SearchCapability)

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValueError):
            SearchServiceClient(BASE_URL, mode="hybrid")

    @pytest.mark.asyncio
    async def test_request_body(self, search_response: dict) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=search_response)

        client = _client(handler, mode="text")
        await client.search("backprop", "t1", 5, frozenset({"ml", "ai"}), 0.5)
        await client.close()

        assert requests[0].url.path == "/v1/search"
        assert json.loads(requests[0].content) == {
            "query": "backprop",
            "tenant_id": "t1",
            "limit": 5,
            "mode": "text",
            "categories": ["ai", "ml"],
        }

    @pytest.mark.asyncio
    async def test_results_parsed_into_hits(self, search_response: dict) -> None:
        client = _client(lambda r: httpx.Response(200, json=search_response))

        hits = await client.search("backprop", "t1", 5, frozenset(), 0.5)

        assert hits[0] == StoreHit(
            id="chunk-1",
            content="Backpropagation computes gradients layer by layer.",
            score=0.91,
            tenant_id="t1",
            metadata={"title": "Deep Learning, ch. 6", "page": 197},
            required_permissions=frozenset({"t1:read"}),
            embedding=(0.1, 0.2),
        )
        assert hits[1].id == "2"
        assert hits[1].score == 0.5
        assert hits[1].embedding is None

    @pytest.mark.asyncio
    async def test_empty_results(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={}))

        assert await client.search("q", "t1", 5, frozenset(), 0.5) == []

    @pytest.mark.asyncio
    async def test_malformed_hit_raises(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"results": [{"id": "x"}]}))

        with pytest.raises(AdapterFailureError) as exc_info:
            await client.search("q", "t1", 5, frozenset(), 0.5)

        assert exc_info.value.adapter == "search-service:vector"

    @pytest.mark.asyncio
    async def test_http_error_raises_adapter_failure(self) -> None:
        client = _client(lambda r: httpx.Response(500))

        with pytest.raises(AdapterFailureError):
            await client.search("q", "t1", 5, frozenset(), 0.5)

    @pytest.mark.asyncio
    async def test_timeout_raises_adapter_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(AdapterTimeoutError) as exc_info:
            await _client(handler).search("q", "t1", 5, frozenset(), 0.3)

        assert exc_info.value.timeout_seconds == 0.3
