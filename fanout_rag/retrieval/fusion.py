"""Fusion Engine.

Turns N independently scored adapter lists into one ranking. Exactly one
strategy is active per run:

- RRF: ``score = sum(1 / (k + rank))`` over every adapter list that
  contains the candidate, rank being 1-based within that list. Raw scores
  are ignored, so any monotone rescaling of an adapter's scores leaves the
  fused order unchanged.
- WEIGHTED: each adapter's raw scores are min-max normalized to [0, 1]
  (inverted for rank/depth semantics) and combined as
  ``sum(weight[source_type] * normalized)``. Weights are renormalized to sum
  to 1 over the source types that were dispatched; a source type's weight is
  split evenly between its adapters.

Candidates are identified across lists by (tenant, content id). Ties on the
fused score break by fan-in (descending), then earliest arrival, then
content id. The engine holds no state between calls.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from fanout_rag.core.constants import (
    DEFAULT_FULL_TEXT_WEIGHT,
    DEFAULT_RRF_K,
    DEFAULT_VECTOR_WEIGHT,
)
from fanout_rag.schemas.retrieval_models import (
    AdapterOutcome,
    Candidate,
    FusedCandidate,
    FusionStrategy,
    PipelineStage,
    ProvenanceStep,
    SourceType,
    merge_provenance,
)


def _default_weights() -> dict[SourceType, float]:
    return {
        SourceType.VECTOR_STORE: DEFAULT_VECTOR_WEIGHT,
        SourceType.FULL_TEXT: DEFAULT_FULL_TEXT_WEIGHT,
    }


@dataclass
class _Accumulator:
    candidate: Candidate
    arrived_at: float
    score: float = 0.0
    adapters: list[str] = field(default_factory=list)
    ranks: list[str] = field(default_factory=list)
    provenance: tuple[ProvenanceStep, ...] = ()


def fusion_sort_key(item: FusedCandidate) -> tuple[float, int, float, str]:
    """Fused score desc, fan-in desc, arrival asc, content id asc."""
    return (-item.fused_score, -item.fan_in, item.arrived_at, item.content_id)


def normalize_scores(scores: Sequence[float], higher_is_better: bool = True) -> np.ndarray:
    """Min-max normalize to [0, 1]; all-equal input maps to 1.0."""
    values = np.asarray(scores, dtype=float)
    if values.size == 0:
        return values
    low, high = float(values.min()), float(values.max())
    if high == low:
        return np.ones_like(values)
    normalized = (values - low) / (high - low)
    return normalized if higher_is_better else 1.0 - normalized


@dataclass(frozen=True)
class FusionEngine:
    """Cross-adapter score fusion.

    Attributes:
        strategy: RRF or WEIGHTED
        rrf_k: RRF damping constant
        weights: Per-source-type weights for WEIGHTED
    """

    strategy: FusionStrategy = FusionStrategy.RRF
    rrf_k: int = DEFAULT_RRF_K
    weights: Mapping[SourceType, float] = field(default_factory=_default_weights)

    def fuse(self, outcomes: Sequence[AdapterOutcome]) -> list[FusedCandidate]:
        """Fuse adapter outcomes into one ranked list."""
        usable = sorted(
            (o for o in outcomes if o.succeeded and o.candidates),
            key=lambda o: (o.arrived_at, o.adapter),
        )
        if not usable:
            return []

        if self.strategy is FusionStrategy.RRF:
            contributions = {o.adapter: self._rrf_contributions(o) for o in usable}
        else:
            adapter_weights = self._adapter_weights(outcomes)
            contributions = {
                o.adapter: self._weighted_contributions(o, adapter_weights[o.adapter])
                for o in usable
            }

        accumulators: dict[tuple[str, str], _Accumulator] = {}
        for outcome in usable:
            for rank, (candidate, score) in enumerate(contributions[outcome.adapter], start=1):
                key = (candidate.tenant_id, candidate.content_id)
                acc = accumulators.get(key)
                if acc is None:
                    acc = _Accumulator(candidate=candidate, arrived_at=outcome.arrived_at)
                    accumulators[key] = acc
                elif outcome.adapter in acc.adapters:
                    continue
                acc.score += score
                acc.adapters.append(outcome.adapter)
                acc.ranks.append(f"{outcome.adapter}#{rank}")
                acc.provenance = merge_provenance(acc.provenance, candidate.provenance)

        fused = [self._to_fused(acc) for acc in accumulators.values()]
        fused.sort(key=fusion_sort_key)
        return fused

    def _rrf_contributions(self, outcome: AdapterOutcome) -> list[tuple[Candidate, float]]:
        unique = self._first_occurrences(outcome.candidates)
        return [
            (candidate, 1.0 / (self.rrf_k + rank))
            for rank, candidate in enumerate(unique, start=1)
        ]

    def _weighted_contributions(
        self, outcome: AdapterOutcome, weight: float
    ) -> list[tuple[Candidate, float]]:
        unique = self._first_occurrences(outcome.candidates)
        normalized = normalize_scores(
            [c.score for c in unique],
            higher_is_better=outcome.score_semantics.higher_is_better,
        )
        return [(c, weight * float(n)) for c, n in zip(unique, normalized)]

    def _adapter_weights(self, outcomes: Sequence[AdapterOutcome]) -> dict[str, float]:
        """Per-adapter weight: source weight renormalized, split per adapter."""
        by_source: dict[SourceType, list[str]] = {}
        for outcome in outcomes:
            by_source.setdefault(outcome.source_type, []).append(outcome.adapter)

        raw = {source: float(self.weights.get(source, 0.0)) for source in by_source}
        total = sum(raw.values())
        if total <= 0:
            raw = {source: 1.0 for source in by_source}
            total = float(len(raw))

        weights: dict[str, float] = {}
        for source, adapters in by_source.items():
            share = raw[source] / total / len(adapters)
            for adapter in adapters:
                weights[adapter] = share
        return weights

    @staticmethod
    def _first_occurrences(candidates: Sequence[Candidate]) -> list[Candidate]:
        seen: set[tuple[str, str]] = set()
        unique: list[Candidate] = []
        for candidate in candidates:
            key = (candidate.tenant_id, candidate.content_id)
            if key not in seen:
                seen.add(key)
                unique.append(candidate)
        return unique

    def _to_fused(self, acc: _Accumulator) -> FusedCandidate:
        step = ProvenanceStep(
            PipelineStage.FUSION,
            self.strategy.value,
            f"score={acc.score:.6f} ranks={','.join(acc.ranks)}",
        )
        return FusedCandidate(
            candidate=acc.candidate,
            fused_score=acc.score,
            adapters=tuple(acc.adapters),
            arrived_at=acc.arrived_at,
            provenance=(*acc.provenance, step),
        )
