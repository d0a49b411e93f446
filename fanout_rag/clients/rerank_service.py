"""Cross-Encoder Rerank Service Client.

Async client for the relevance scoring service's batch endpoint:

    POST /v1/rerank {"query": str, "documents": [str, ...]}
    -> {"scores": [float | null, ...]}

Also provides:
- FakeCrossEncoderClient: Test double for unit testing
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from fanout_rag.core.constants import DEFAULT_RERANK_TIMEOUT, ENDPOINT_RERANK
from fanout_rag.core.exceptions import RerankServiceError, RerankTimeoutError


logger = logging.getLogger(__name__)


class HttpCrossEncoderClient:
    """HTTP client for the cross-encoder scoring service.

    Uses one pooled httpx.AsyncClient (lazy) for all batches.

    Example:
        >>> client = HttpCrossEncoderClient(base_url="http://localhost:8085")
        >>> scores = await client.score("neural nets", ["doc a", "doc b"])
        >>> await client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_RERANK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL for the scoring service
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

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

    async def score(
        self,
        query: str,
        documents: Sequence[str],
        timeout: float | None = None,
    ) -> list[float | None]:
        """Score one batch of documents against the query.

        Returns:
            One score per document; ``None`` where the service gave none.

        Raises:
            RerankTimeoutError: Request exceeded the timeout.
            RerankServiceError: HTTP error or malformed response.
        """
        if not documents:
            return []
        client = await self._get_client()
        request_timeout = self.timeout if timeout is None else timeout
        try:
            response = await client.post(
                ENDPOINT_RERANK,
                json={"query": query, "documents": list(documents)},
                timeout=request_timeout,
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise RerankTimeoutError(
                f"Rerank request timed out after {request_timeout}s",
                timeout_seconds=request_timeout,
                cause=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RerankServiceError(
                f"Rerank request failed: {e}", cause=e, url=self.base_url
            ) from e

        return self._parse_scores(payload, len(documents))

    def _parse_scores(self, payload: dict[str, Any], expected: int) -> list[float | None]:
        scores = payload.get("scores")
        if not isinstance(scores, list) or len(scores) != expected:
            raise RerankServiceError(
                f"Rerank response has {len(scores) if isinstance(scores, list) else 'no'} "
                f"scores for {expected} documents",
                url=self.base_url,
            )
        parsed: list[float | None] = []
        for value in scores:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                parsed.append(float(value))
            else:
                parsed.append(None)
        return parsed


class FakeCrossEncoderClient:
    """Fake cross-encoder for testing.

    Implements CrossEncoderProtocol via duck typing. Scores come from
    ``scorer`` (default: fraction of query tokens present in the document).
    """

    def __init__(
        self,
        scorer: Callable[[str, str], float | None] | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._scorer = scorer or _token_overlap
        self.delay = delay
        self.error = error
        self.score_calls: list[dict[str, Any]] = []
        self.closed = False

    async def score(
        self,
        query: str,
        documents: Sequence[str],
        timeout: float | None = None,
    ) -> list[float | None]:
        self.score_calls.append({"query": query, "documents": list(documents)})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [self._scorer(query, doc) for doc in documents]

    async def close(self) -> None:
        self.closed = True


def _token_overlap(query: str, document: str) -> float:
    terms = set(query.lower().split())
    if not terms:
        return 0.0
    words = set(document.lower().split())
    return len(terms & words) / len(terms)
