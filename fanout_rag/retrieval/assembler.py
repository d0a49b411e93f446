"""Context Assembler.

Final stage: caps the reranked list and derives citations.

- Per-source-type caps drop the lowest-ranked excess of each type; the
  relative order of what remains is untouched. The total cap is applied
  after the per-type caps.
- Each retained candidate gets a Citation: a descriptor built from its
  metadata (title, page, url), a bounded snippet, a confidence in [0, 1]
  and the full provenance chain.

Confidence is the rerank score normalized within its score origin, since a
cross-encoder score and an RRF score are not on the same scale.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from fanout_rag.core.constants import (
    DEFAULT_MAX_RESULTS,
    DEFAULT_SNIPPET_LENGTH,
    SNIPPET_ELLIPSIS,
)
from fanout_rag.schemas.retrieval_models import (
    Citation,
    PipelineStage,
    ProvenanceStep,
    RerankedCandidate,
    RetrievalMetrics,
    RetrievalResult,
    SourceType,
)


ASSEMBLER_ACTOR = "context_assembler"

TITLE_KEYS = ("title", "name", "heading")
URL_KEYS = ("url", "source_url", "uri")
PAGE_KEYS = ("page", "page_number", "section")


def truncate_snippet(content: str, length: int = DEFAULT_SNIPPET_LENGTH) -> str:
    """Collapse whitespace and cut to ``length`` characters on a word boundary."""
    text = " ".join(content.split())
    if len(text) <= length:
        return text
    limit = max(0, length - len(SNIPPET_ELLIPSIS))
    cut = text[:limit]
    if text[limit : limit + 1] != " " and " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip() + SNIPPET_ELLIPSIS


def normalize_confidence(items: Sequence[RerankedCandidate]) -> list[float]:
    """Map rerank scores to [0, 1], separately for each score origin."""
    by_origin: dict[str, list[float]] = {}
    for item in items:
        by_origin.setdefault(item.score_origin, []).append(item.rerank_score)

    bounds = {origin: (min(scores), max(scores)) for origin, scores in by_origin.items()}
    confidences: list[float] = []
    for item in items:
        low, high = bounds[item.score_origin]
        score = item.rerank_score
        if high == low:
            value = 1.0
        elif low >= 0:
            value = score / high
        else:
            value = (score - low) / (high - low)
        confidences.append(round(min(1.0, max(0.0, value)), 6))
    return confidences


def _first(metadata: Mapping[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


class ContextAssembler:
    """Applies output caps and builds the citation list.

    Attributes:
        max_results: Total result cap.
        source_caps: Per-source-type caps; an absent type is uncapped.
        snippet_length: Citation preview length.
    """

    def __init__(
        self,
        max_results: int = DEFAULT_MAX_RESULTS,
        source_caps: Mapping[SourceType, int] | None = None,
        snippet_length: int = DEFAULT_SNIPPET_LENGTH,
    ) -> None:
        self.max_results = max_results
        self.source_caps = dict(source_caps or {})
        self.snippet_length = snippet_length

    def apply_caps(self, items: Sequence[RerankedCandidate]) -> list[RerankedCandidate]:
        """Per-type caps, then the total cap, in one ordered pass."""
        counts: dict[SourceType, int] = {}
        kept: list[RerankedCandidate] = []
        for item in items:
            if len(kept) >= self.max_results:
                break
            source = item.source_type
            cap = self.source_caps.get(source)
            if cap is not None and counts.get(source, 0) >= cap:
                continue
            counts[source] = counts.get(source, 0) + 1
            kept.append(item)
        return kept

    def assemble(
        self,
        query_id: str,
        query_text: str,
        items: Sequence[RerankedCandidate],
        metrics: RetrievalMetrics | None = None,
    ) -> RetrievalResult:
        """Build the final RetrievalResult."""
        kept = self.apply_caps(items)
        total = len(kept)
        stamped = [
            replace(
                item,
                provenance=(
                    *item.provenance,
                    ProvenanceStep(PipelineStage.ASSEMBLY, ASSEMBLER_ACTOR, f"position={i}/{total}"),
                ),
            )
            for i, item in enumerate(kept, start=1)
        ]
        confidences = normalize_confidence(stamped)
        citations = [
            self.build_citation(item, confidence, number)
            for number, (item, confidence) in enumerate(zip(stamped, confidences), start=1)
        ]

        metrics = metrics or RetrievalMetrics()
        metrics.source_counts = {}
        for item in stamped:
            key = item.source_type.value
            metrics.source_counts[key] = metrics.source_counts.get(key, 0) + 1

        return RetrievalResult(
            query_id=query_id,
            query=query_text,
            candidates=stamped,
            citations=citations,
            metrics=metrics,
        )

    def build_citation(
        self,
        item: RerankedCandidate,
        confidence: float,
        footnote_number: int | None = None,
    ) -> Citation:
        metadata = item.candidate.metadata
        return Citation(
            source_type=item.source_type,
            source_id=item.content_id,
            title=_first(metadata, TITLE_KEYS),
            snippet=truncate_snippet(item.candidate.content, self.snippet_length),
            confidence=confidence,
            provenance=item.provenance,
            url=_first(metadata, URL_KEYS),
            page=_first(metadata, PAGE_KEYS),
            footnote_number=footnote_number,
        )
