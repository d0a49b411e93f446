"""External Service Client Protocols.

Duck typing protocols for service clients - enables FakeClient substitution
in tests.

Pattern: Protocol duck typing (CODING_PATTERNS_ANALYSIS.md)
Anti-Pattern Mitigation: #12 (Connection Pooling via shared client)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable


@runtime_checkable
class CrossEncoderProtocol(Protocol):
    """Protocol for a cross-encoder relevance scoring service.

    The service jointly encodes (query, document) pairs and returns one
    score per document, order-preserving. A ``None`` entry means that pair
    could not be scored; the rest of the batch is still valid.
    """

    async def score(
        self,
        query: str,
        documents: Sequence[str],
        timeout: float | None = None,
    ) -> list[float | None]:
        """Score documents against the query.

        Raises:
            RerankServiceError: The batch failed as a whole.
            RerankTimeoutError: The batch exceeded ``timeout``.
        """
        ...

    async def close(self) -> None:
        """Release HTTP client resources."""
        ...
