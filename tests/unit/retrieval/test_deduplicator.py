"""Unit Tests for the Deduplicator.

Tests fingerprint grouping within a tenant, survivor selection, provenance
and adapter merging, order preservation and idempotence.
"""

from __future__ import annotations

from fanout_rag.retrieval.deduplicator import Deduplicator
from fanout_rag.retrieval.fusion import FusionEngine
from fanout_rag.schemas.retrieval_models import PipelineStage, SourceType
from tests.fakes.builders import make_candidate, make_fused, make_outcome


def _same_text(content_id: str, adapter: str = "vector", **kwargs):
    return make_candidate(
        content_id,
        adapter=adapter,
        content="Backpropagation computes gradients layer by layer.",
        **kwargs,
    )


class TestDeduplicator:
    """Exact-fingerprint deduplication."""

    def test_merges_same_fingerprint(self) -> None:
        c1 = make_fused(_same_text("c1"), 0.03, adapters=("vector",), arrived_at=1.0)
        c2 = make_fused(
            _same_text("c2", adapter="text", source_type=SourceType.FULL_TEXT),
            0.02,
            adapters=("text",),
            arrived_at=2.0,
        )

        result = Deduplicator().deduplicate([c1, c2])

        assert len(result) == 1
        survivor = result[0]
        assert survivor.content_id == "c1"
        assert survivor.adapters == ("vector", "text")
        assert survivor.fan_in == 2
        assert survivor.fused_score == 0.03

    def test_survivor_is_highest_scoring_member(self) -> None:
        low = make_fused(_same_text("low"), 0.01, adapters=("vector",), arrived_at=1.0)
        high = make_fused(_same_text("high", adapter="text"), 0.05, adapters=("text",), arrived_at=2.0)

        result = Deduplicator().deduplicate([low, high])

        assert [r.content_id for r in result] == ["high"]
        assert result[0].arrived_at == 1.0

    def test_provenance_merged_from_all_members(self) -> None:
        c1 = make_fused(_same_text("c1", adapter="vector"), 0.03)
        c2 = make_fused(_same_text("c2", adapter="text"), 0.02)

        survivor = Deduplicator().deduplicate([c1, c2])[0]

        retrieve_actors = [
            step.actor for step in survivor.provenance if step.stage is PipelineStage.RETRIEVE
        ]
        assert retrieve_actors == ["vector", "text"]
        dedup_steps = [s for s in survivor.provenance if s.stage is PipelineStage.DEDUP]
        assert len(dedup_steps) == 1
        assert "c2" in dedup_steps[0].detail

    def test_order_preserved(self) -> None:
        items = [
            make_fused(make_candidate("a", content="alpha"), 0.05),
            make_fused(make_candidate("b", content="beta"), 0.04),
            make_fused(make_candidate("a-copy", content="ALPHA "), 0.03),
            make_fused(make_candidate("c", content="gamma"), 0.02),
        ]

        result = Deduplicator().deduplicate(items)

        assert [r.content_id for r in result] == ["a", "b", "c"]

    def test_same_text_different_tenants_kept(self) -> None:
        t1 = make_fused(_same_text("x", tenant_id="t1"), 0.03)
        t2 = make_fused(_same_text("x", tenant_id="t2"), 0.03)

        result = Deduplicator().deduplicate([t1, t2])

        assert len(result) == 2

    def test_output_fingerprints_unique_per_tenant(self) -> None:
        items = [
            make_fused(make_candidate(f"id{i}", content=f"text {i % 3}"), 1.0 / (i + 1))
            for i in range(9)
        ]

        result = Deduplicator().deduplicate(items)

        keys = [(r.tenant_id, r.fingerprint) for r in result]
        assert len(keys) == len(set(keys)) == 3

    def test_idempotent(self) -> None:
        items = [
            make_fused(_same_text("c1"), 0.03, adapters=("vector",)),
            make_fused(_same_text("c2", adapter="text"), 0.02, adapters=("text",)),
            make_fused(make_candidate("c3", content="other"), 0.01),
        ]
        dedup = Deduplicator()

        once = dedup.deduplicate(items)
        twice = dedup.deduplicate(once)

        assert twice == once

    def test_empty_input(self) -> None:
        assert Deduplicator().deduplicate([]) == []

    def test_merged_fan_in_breaks_fused_score_tie(self) -> None:
        vector = make_outcome(
            "vector",
            [
                make_candidate("C3", content="unrelated passage", score=0.9),
                _same_text("C1", score=0.5),
            ],
            arrived_at=1.0,
        )
        text = make_outcome(
            "text",
            [_same_text("C2", adapter="text", source_type=SourceType.FULL_TEXT, score=7.0)],
            source_type=SourceType.FULL_TEXT,
            arrived_at=2.0,
        )
        fused = FusionEngine().fuse([vector, text])

        result = Deduplicator().deduplicate(fused)

        assert [(r.content_id, r.fan_in) for r in result] == [("C2", 2), ("C3", 1)]
        assert result[0].fused_score == result[1].fused_score

    def test_unmerged_items_keep_fused_order(self) -> None:
        items = [
            make_fused(make_candidate("x", content="one"), 0.02, arrived_at=1.0),
            make_fused(make_candidate("y", content="two"), 0.02, arrived_at=2.0),
            make_fused(make_candidate("z", content="three"), 0.01, arrived_at=0.5),
        ]

        assert [r.content_id for r in Deduplicator().deduplicate(items)] == ["x", "y", "z"]
