"""Unit Tests for the Reranker.

Covers the enum-dispatched variants (none, MMR, cross-encoder), the top-N
head/tail split and the cross-encoder degradation paths.
"""

from __future__ import annotations

import pytest

from fanout_rag.clients.rerank_service import FakeCrossEncoderClient
from fanout_rag.core.exceptions import RerankServiceError, RerankTimeoutError
from fanout_rag.retrieval.config import PipelineConfig
from fanout_rag.retrieval.reranker import Reranker, relevance_scores, similarity_matrix
from fanout_rag.schemas.retrieval_models import FusedCandidate, PipelineStage, RerankerKind
from tests.fakes.builders import make_candidate, make_fused, make_query


@pytest.fixture
def near_duplicates() -> list[FusedCandidate]:
    """a and a2 point the same way; b is orthogonal and least relevant."""
    return [
        make_fused(make_candidate("a", content="alpha one", embedding=(1.0, 0.0)), 0.05),
        make_fused(make_candidate("a2", content="alpha two", embedding=(0.99, 0.1)), 0.04),
        make_fused(make_candidate("b", content="beta", embedding=(0.0, 1.0)), 0.03),
    ]


@pytest.fixture
def plain_items() -> list[FusedCandidate]:
    return [
        make_fused(make_candidate("a"), 0.05),
        make_fused(make_candidate("b"), 0.04),
        make_fused(make_candidate("c"), 0.03),
    ]


def _ids(outcome) -> list[str]:
    return [c.content_id for c in outcome.candidates]


SCORES = {"content of a": 0.1, "content of b": 0.9, "content of c": 0.5}


# =============================================================================
# Pass-through
# =============================================================================


class TestPassthrough:
    @pytest.mark.asyncio
    async def test_none_keeps_fused_order(self, plain_items: list[FusedCandidate]) -> None:
        outcome = await Reranker().rerank(make_query(), plain_items, PipelineConfig())

        assert _ids(outcome) == ["a", "b", "c"]
        assert not outcome.degraded
        assert all(not c.reranked for c in outcome.candidates)
        assert [c.rerank_score for c in outcome.candidates] == [0.05, 0.04, 0.03]
        assert outcome.candidates[0].provenance[-1].stage is PipelineStage.RERANK

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        outcome = await Reranker().rerank(make_query(), [], PipelineConfig(reranker=RerankerKind.MMR))

        assert outcome.candidates == []


# =============================================================================
# MMR
# =============================================================================


class TestMMR:
    @pytest.mark.asyncio
    async def test_lambda_one_is_relevance_order(self, near_duplicates: list[FusedCandidate]) -> None:
        config = PipelineConfig(reranker=RerankerKind.MMR, mmr_lambda=1.0)

        outcome = await Reranker().rerank(make_query(), near_duplicates, config)

        assert _ids(outcome) == ["a", "a2", "b"]

    @pytest.mark.asyncio
    async def test_lambda_zero_first_pick_is_most_relevant(
        self, near_duplicates: list[FusedCandidate]
    ) -> None:
        config = PipelineConfig(reranker=RerankerKind.MMR, mmr_lambda=0.0)

        outcome = await Reranker().rerank(make_query(), near_duplicates, config)

        assert _ids(outcome)[0] == "a"

    @pytest.mark.asyncio
    async def test_lambda_zero_prefers_dissimilar(
        self, near_duplicates: list[FusedCandidate]
    ) -> None:
        config = PipelineConfig(reranker=RerankerKind.MMR, mmr_lambda=0.0)

        outcome = await Reranker().rerank(make_query(), near_duplicates, config)

        assert _ids(outcome) == ["a", "b", "a2"]

    @pytest.mark.asyncio
    async def test_default_lambda_demotes_near_duplicate(
        self, near_duplicates: list[FusedCandidate]
    ) -> None:
        outcome = await Reranker().rerank(
            make_query(), near_duplicates, PipelineConfig(reranker=RerankerKind.MMR)
        )

        assert _ids(outcome) == ["a", "b", "a2"]

    @pytest.mark.asyncio
    async def test_scores_and_penalties(self, near_duplicates: list[FusedCandidate]) -> None:
        outcome = await Reranker().rerank(
            make_query(), near_duplicates, PipelineConfig(reranker=RerankerKind.MMR)
        )

        first, second, third = outcome.candidates
        assert first.diversity_penalty == 0.0
        assert first.rerank_score == pytest.approx(1.0)
        assert second.diversity_penalty == pytest.approx(0.0)
        assert third.diversity_penalty == pytest.approx(0.995, abs=0.01)
        assert all(c.reranked and c.score_origin == "mmr" for c in outcome.candidates)
        assert outcome.scored == 3

    @pytest.mark.asyncio
    async def test_jaccard_when_embeddings_missing(self) -> None:
        items = [
            make_fused(make_candidate("a", content="neural network training"), 0.05),
            make_fused(make_candidate("a2", content="neural network training tips"), 0.045),
            make_fused(make_candidate("b", content="graph databases"), 0.04),
        ]

        outcome = await Reranker().rerank(
            make_query(), items, PipelineConfig(reranker=RerankerKind.MMR, mmr_lambda=0.3)
        )

        assert _ids(outcome) == ["a", "b", "a2"]

    @pytest.mark.asyncio
    async def test_tail_beyond_top_n_appended(self, near_duplicates: list[FusedCandidate]) -> None:
        config = PipelineConfig(reranker=RerankerKind.MMR, mmr_lambda=0.0, rerank_top_n=2)

        outcome = await Reranker().rerank(make_query(), near_duplicates, config)

        assert _ids(outcome) == ["a", "a2", "b"]
        tail = outcome.candidates[-1]
        assert not tail.reranked
        assert tail.score_origin == "fusion"
        assert tail.provenance[-1].detail == "beyond_top_n"


class TestSimilarityHelpers:
    def test_relevance_scaled_by_max(self, plain_items: list[FusedCandidate]) -> None:
        assert list(relevance_scores(plain_items)) == pytest.approx([1.0, 0.8, 0.6])

    def test_cosine_matrix(self, near_duplicates: list[FusedCandidate]) -> None:
        matrix = similarity_matrix(near_duplicates)

        assert matrix[0, 0] == pytest.approx(1.0)
        assert matrix[0, 2] == pytest.approx(0.0)
        assert matrix[0, 1] == matrix[1, 0]


# =============================================================================
# Cross-encoder
# =============================================================================


class TestCrossEncoder:
    @pytest.fixture
    def config(self) -> PipelineConfig:
        return PipelineConfig(reranker=RerankerKind.CROSS_ENCODER, rerank_batch_size=2)

    @pytest.mark.asyncio
    async def test_reorders_by_service_score(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(lambda q, d: SCORES[d])

        outcome = await Reranker(client).rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["b", "c", "a"]
        assert not outcome.degraded
        assert outcome.candidates[0].rerank_score == pytest.approx(0.9)
        assert outcome.candidates[0].score_origin == "cross_encoder"

    @pytest.mark.asyncio
    async def test_pairs_sent_in_batches(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(lambda q, d: SCORES[d])

        await Reranker(client).rerank(make_query(), plain_items, config)

        assert [len(call["documents"]) for call in client.score_calls] == [2, 1]
        assert all(call["query"] == "how to train a neural network" for call in client.score_calls)

    @pytest.mark.asyncio
    async def test_service_failure_keeps_fused_order(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(error=RerankServiceError("boom"))

        outcome = await Reranker(client).rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["a", "b", "c"]
        assert outcome.degraded
        assert outcome.reason == "rerank_failed"
        assert all(not c.reranked for c in outcome.candidates)

    @pytest.mark.asyncio
    async def test_service_timeout_keeps_fused_order(
        self, plain_items: list[FusedCandidate]
    ) -> None:
        config = PipelineConfig(reranker=RerankerKind.CROSS_ENCODER, rerank_timeout=0.05)
        client = FakeCrossEncoderClient(lambda q, d: SCORES[d], delay=0.5)

        outcome = await Reranker(client).rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["a", "b", "c"]
        assert outcome.reason == "rerank_timeout"

    @pytest.mark.asyncio
    async def test_client_timeout_reported_as_timeout(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(error=RerankTimeoutError("read timeout", timeout_seconds=0.5))

        outcome = await Reranker(client).rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["a", "b", "c"]
        assert outcome.reason == "rerank_timeout"

    @pytest.mark.asyncio
    async def test_partial_batch_failure(self, plain_items: list[FusedCandidate]) -> None:
        def scorer(query: str, document: str) -> float:
            if document == "content of b":
                raise RerankServiceError("batch rejected")
            return SCORES[document]

        config = PipelineConfig(reranker=RerankerKind.CROSS_ENCODER, rerank_batch_size=1)

        outcome = await Reranker(FakeCrossEncoderClient(scorer)).rerank(
            make_query(), plain_items, config
        )

        assert _ids(outcome) == ["c", "a", "b"]
        assert outcome.candidates[-1].reranked is False
        assert outcome.degraded
        assert outcome.reason == "rerank_partial:rerank_failed"
        assert outcome.scored == 2

    @pytest.mark.asyncio
    async def test_unscored_pairs_follow_scored(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(lambda q, d: None if d == "content of a" else SCORES[d])

        outcome = await Reranker(client).rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["b", "c", "a"]
        assert outcome.reason is not None and outcome.reason.startswith("rerank_partial")

    @pytest.mark.asyncio
    async def test_no_client_configured(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        outcome = await Reranker().rerank(make_query(), plain_items, config)

        assert _ids(outcome) == ["a", "b", "c"]
        assert outcome.reason == "cross_encoder_unavailable"

    @pytest.mark.asyncio
    async def test_exhausted_budget_skips_service(
        self, plain_items: list[FusedCandidate], config: PipelineConfig
    ) -> None:
        client = FakeCrossEncoderClient(lambda q, d: SCORES[d])

        outcome = await Reranker(client).rerank(
            make_query(budget_seconds=0.0), plain_items, config
        )

        assert client.score_calls == []
        assert outcome.reason == "deadline"
        assert _ids(outcome) == ["a", "b", "c"]
