"""Deduplicator.

Collapses fused candidates that carry the same content under different
content ids (the same passage indexed by two stores, a re-ingested
document). Two candidates are duplicates when tenant and content
fingerprint match; candidates of different tenants never merge.

Single pass over a dict keyed on (tenant, fingerprint):
- the survivor is the member with the highest fused score,
- contributing adapters and provenance of every member are merged into it,
- survivors are re-ranked with the fusion sort key, since a merge raises
  fan-in and fan-in breaks fused-score ties. Unmerged items keep their keys,
  so their relative order is unchanged.

Running the deduplicator on its own output changes nothing.

Pattern: Strategy pattern for merging algorithms
Anti-Pattern: No mutable default arguments (AP-1.5)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Protocol

from fanout_rag.retrieval.fusion import fusion_sort_key
from fanout_rag.schemas.retrieval_models import (
    FusedCandidate,
    PipelineStage,
    ProvenanceStep,
    merge_provenance,
)


DEDUP_ACTOR = "fingerprint"


# =============================================================================
# Deduplicator Protocol
# =============================================================================


class DeduplicatorProtocol(Protocol):
    """Protocol for deduplicators.

    Enables duck typing for test doubles.
    """

    def deduplicate(self, items: Sequence[FusedCandidate]) -> list[FusedCandidate]:
        ...


# =============================================================================
# Fingerprint Deduplicator
# =============================================================================


@dataclass
class _Group:
    survivor: FusedCandidate
    members: list[FusedCandidate] = field(default_factory=list)


class Deduplicator:
    """Exact-fingerprint deduplicator for fused candidates."""

    def deduplicate(self, items: Sequence[FusedCandidate]) -> list[FusedCandidate]:
        """Return one candidate per (tenant, fingerprint) in fused ranking order."""
        groups: dict[tuple[str, str], _Group] = {}
        for item in items:
            key = (item.tenant_id, item.fingerprint)
            group = groups.get(key)
            if group is None:
                groups[key] = _Group(survivor=item, members=[item])
                continue
            group.members.append(item)
            if item.fused_score > group.survivor.fused_score:
                group.survivor = item

        return sorted((self._collapse(group) for group in groups.values()), key=fusion_sort_key)

    def _collapse(self, group: _Group) -> FusedCandidate:
        survivor = group.survivor
        if len(group.members) == 1:
            return self._mark(survivor, "unique")

        others = [m for m in group.members if m is not survivor]
        adapters = list(survivor.adapters)
        for member in others:
            adapters.extend(a for a in member.adapters if a not in adapters)

        merged = replace(
            survivor,
            adapters=tuple(adapters),
            arrived_at=min(m.arrived_at for m in group.members),
            provenance=merge_provenance(
                survivor.provenance, *(m.provenance for m in others)
            ),
        )
        absorbed = ",".join(m.content_id for m in others)
        return self._mark(merged, f"absorbed={absorbed}")

    @staticmethod
    def _mark(item: FusedCandidate, detail: str) -> FusedCandidate:
        if any(step.stage is PipelineStage.DEDUP for step in item.provenance):
            return item
        step = ProvenanceStep(PipelineStage.DEDUP, DEDUP_ACTOR, detail)
        return replace(item, provenance=(*item.provenance, step))
