"""Reranker.

Second-pass scorer over the top-N deduplicated candidates. The variant is a
RerankerKind value resolved per query and dispatched through a table, not a
class hierarchy:

- NONE: fused order passes through unchanged.
- MMR: greedy Maximal Marginal Relevance. Each step picks the remaining
  candidate maximizing ``lambda * relevance - (1 - lambda) * max_sim``,
  where relevance is the fused score scaled to [0, 1] and max_sim the
  highest similarity to anything already picked (embedding cosine when every
  candidate has an embedding of the same size, token Jaccard otherwise).
- CROSS_ENCODER: (query, content) pairs go to the external scoring service
  in batches, concurrently, under a sub-deadline carved from the query's
  remaining budget. A failing or late batch leaves its pairs unscored; if no
  pair is scored the pre-rerank order is kept. Both cases are reported as
  degraded, never raised.

Candidates beyond top-N are appended after the reranked head in fused order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from fanout_rag.core.constants import ASSEMBLY_RESERVE
from fanout_rag.core.exceptions import RerankTimeoutError
from fanout_rag.core.logging import get_logger
from fanout_rag.schemas.fingerprint import normalize_content
from fanout_rag.schemas.retrieval_models import (
    FusedCandidate,
    PipelineStage,
    ProvenanceStep,
    RerankedCandidate,
    RerankerKind,
)


if TYPE_CHECKING:
    from fanout_rag.clients.protocols import CrossEncoderProtocol
    from fanout_rag.retrieval.config import PipelineConfig
    from fanout_rag.schemas.retrieval_models import Query


logger = get_logger(__name__)

ORIGIN_FUSION = "fusion"
ORIGIN_MMR = "mmr"
ORIGIN_CROSS_ENCODER = "cross_encoder"


@dataclass
class RerankOutcome:
    """Reranked list plus the degraded-mode signal.

    Attributes:
        candidates: Reranked head followed by the pass-through tail.
        kind: Variant that was requested.
        degraded: True when the requested variant could not be fully applied.
        reason: Why the result is degraded.
        scored: Number of candidates the variant actually scored.
    """

    candidates: list[RerankedCandidate] = field(default_factory=list)
    kind: RerankerKind = RerankerKind.NONE
    degraded: bool = False
    reason: str | None = None
    scored: int = 0


@dataclass
class _HeadResult:
    ranked: list[RerankedCandidate]
    scored: int
    reason: str | None = None


# =============================================================================
# Similarity helpers
# =============================================================================


def relevance_scores(items: Sequence[FusedCandidate]) -> np.ndarray:
    """Fused scores scaled by the maximum into [0, 1]."""
    scores = np.asarray([item.fused_score for item in items], dtype=float)
    if scores.size == 0:
        return scores
    top = float(scores.max())
    if top <= 0:
        return np.ones_like(scores)
    return np.clip(scores / top, 0.0, 1.0)


def similarity_matrix(items: Sequence[FusedCandidate]) -> np.ndarray:
    """Pairwise content similarity."""
    embeddings = [item.candidate.embedding for item in items]
    sizes = {len(e) for e in embeddings if e}
    if embeddings and all(embeddings) and len(sizes) == 1:
        vectors = np.asarray(embeddings, dtype=float)
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        unit = vectors / norms
        return unit @ unit.T

    tokens = [set(normalize_content(item.content).split()) for item in items]
    size = len(items)
    matrix = np.eye(size)
    for i in range(size):
        for j in range(i + 1, size):
            union = tokens[i] | tokens[j]
            value = len(tokens[i] & tokens[j]) / len(union) if union else 0.0
            matrix[i, j] = matrix[j, i] = value
    return matrix


# =============================================================================
# Reranker
# =============================================================================


class Reranker:
    """Enum-dispatched second-pass reranker.

    Example:
        >>> reranker = Reranker(cross_encoder=FakeCrossEncoderClient())
        >>> outcome = await reranker.rerank(query, deduped, config)
    """

    def __init__(self, cross_encoder: CrossEncoderProtocol | None = None) -> None:
        self._cross_encoder = cross_encoder
        self._strategies: dict[
            RerankerKind,
            Callable[[Query, list[FusedCandidate], PipelineConfig], Awaitable[_HeadResult]],
        ] = {
            RerankerKind.NONE: self._passthrough,
            RerankerKind.MMR: self._mmr,
            RerankerKind.CROSS_ENCODER: self._cross_encode,
        }

    async def rerank(
        self,
        query: Query,
        items: Sequence[FusedCandidate],
        config: PipelineConfig,
    ) -> RerankOutcome:
        """Rerank the head of ``items`` with the configured variant."""
        kind = config.reranker
        head = list(items[: config.rerank_top_n])
        tail = items[config.rerank_top_n :]

        result = await self._strategies[kind](query, head, config)
        ranked = result.ranked + [
            _unranked(item, kind, "beyond_top_n") for item in tail
        ]
        outcome = RerankOutcome(
            candidates=ranked,
            kind=kind,
            degraded=result.reason is not None,
            reason=result.reason,
            scored=result.scored,
        )
        if outcome.degraded:
            logger.warning(
                "rerank_degraded",
                query_id=query.query_id,
                reranker=kind.value,
                reason=outcome.reason,
                scored=outcome.scored,
                candidates=len(head),
            )
        return outcome

    async def _passthrough(
        self, query: Query, head: list[FusedCandidate], config: PipelineConfig
    ) -> _HeadResult:
        return _HeadResult(
            ranked=[_unranked(item, RerankerKind.NONE, "passthrough") for item in head],
            scored=0,
        )

    async def _mmr(
        self, query: Query, head: list[FusedCandidate], config: PipelineConfig
    ) -> _HeadResult:
        if not head:
            return _HeadResult(ranked=[], scored=0)

        lam = config.mmr_lambda
        relevance = relevance_scores(head)
        similarity = similarity_matrix(head)
        remaining = list(range(len(head)))
        max_sim = np.full(len(head), -np.inf)
        ranked: list[RerankedCandidate] = []

        while remaining:
            if not ranked:
                best = max(remaining, key=lambda i: (relevance[i], -i))
                penalty = 0.0
            else:
                best = max(
                    remaining,
                    key=lambda i: (lam * relevance[i] - (1.0 - lam) * max_sim[i], -i),
                )
                penalty = float(max_sim[best])
            remaining.remove(best)
            max_sim = np.maximum(max_sim, similarity[best])

            item = head[best]
            step = ProvenanceStep(
                PipelineStage.RERANK,
                RerankerKind.MMR.value,
                f"lambda={lam} relevance={relevance[best]:.4f} max_sim={penalty:.4f}",
            )
            ranked.append(
                RerankedCandidate(
                    fused=item,
                    rerank_score=float(relevance[best]),
                    score_origin=ORIGIN_MMR,
                    provenance=(*item.provenance, step),
                    diversity_penalty=penalty,
                )
            )
        return _HeadResult(ranked=ranked, scored=len(ranked))

    async def _cross_encode(
        self, query: Query, head: list[FusedCandidate], config: PipelineConfig
    ) -> _HeadResult:
        if not head:
            return _HeadResult(ranked=[], scored=0)
        cross_encoder = self._cross_encoder
        if cross_encoder is None:
            return self._fallback(head, "cross_encoder_unavailable")

        budget = min(config.rerank_timeout, query.remaining() - ASSEMBLY_RESERVE)
        if budget <= 0:
            return self._fallback(head, "deadline")

        scores, failure = await self._score_batches(
            cross_encoder, query, head, config.rerank_batch_size, budget
        )
        scored = [(item, s) for item, s in zip(head, scores) if s is not None]
        if not scored:
            return self._fallback(head, failure or "rerank_failed")

        # sorted() is stable: equal scores keep fused order.
        scored.sort(key=lambda pair: -pair[1])
        ranked = [
            RerankedCandidate(
                fused=item,
                rerank_score=score,
                score_origin=ORIGIN_CROSS_ENCODER,
                provenance=(
                    *item.provenance,
                    ProvenanceStep(
                        PipelineStage.RERANK, RerankerKind.CROSS_ENCODER.value, f"score={score:.4f}"
                    ),
                ),
            )
            for item, score in scored
        ]
        unscored = [item for item, s in zip(head, scores) if s is None]
        ranked.extend(_unranked(item, RerankerKind.CROSS_ENCODER, "unscored") for item in unscored)
        reason = f"rerank_partial:{failure or 'unscored'}" if unscored else None
        return _HeadResult(ranked=ranked, scored=len(scored), reason=reason)

    @staticmethod
    async def _score_batches(
        cross_encoder: CrossEncoderProtocol,
        query: Query,
        head: list[FusedCandidate],
        batch_size: int,
        budget: float,
    ) -> tuple[list[float | None], str | None]:
        """Score all batches concurrently; unscored pairs come back as None.

        A batch still pending at the budget, or one whose client call raised
        RerankTimeoutError, is reported as ``rerank_timeout``; any other
        error as ``rerank_failed``.
        """
        batches = [head[i : i + batch_size] for i in range(0, len(head), batch_size)]
        tasks = [
            asyncio.create_task(
                cross_encoder.score(query.text, [item.content for item in batch], budget)
            )
            for batch in batches
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=budget)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        for task in pending:
            task.cancel()

        scores: list[float | None] = []
        failure: str | None = None
        for task, batch in zip(tasks, batches):
            if task in pending:
                failure = "rerank_timeout"
                scores.extend([None] * len(batch))
                continue
            error = task.exception()
            if error is not None:
                logger.warning(
                    "rerank_batch_failed",
                    query_id=query.query_id,
                    batch_size=len(batch),
                    error=str(error) or type(error).__name__,
                )
                timed_out = isinstance(error, (RerankTimeoutError, asyncio.TimeoutError))
                failure = failure or ("rerank_timeout" if timed_out else "rerank_failed")
                scores.extend([None] * len(batch))
                continue
            batch_scores = list(task.result())
            if len(batch_scores) != len(batch):
                failure = failure or "rerank_failed"
                batch_scores = [None] * len(batch)
            scores.extend(batch_scores)
        return scores, failure

    @staticmethod
    def _fallback(head: list[FusedCandidate], reason: str) -> _HeadResult:
        return _HeadResult(
            ranked=[_unranked(item, RerankerKind.CROSS_ENCODER, f"fallback:{reason}") for item in head],
            scored=0,
            reason=reason,
        )


def _unranked(item: FusedCandidate, kind: RerankerKind, detail: str) -> RerankedCandidate:
    """Wrap a candidate that keeps its fused position and score."""
    return RerankedCandidate(
        fused=item,
        rerank_score=item.fused_score,
        score_origin=ORIGIN_FUSION,
        provenance=(*item.provenance, ProvenanceStep(PipelineStage.RERANK, kind.value, detail)),
        reranked=False,
    )
