"""Source Adapter Protocols.

Duck typing protocols for retrieval backends - enables fake adapter
substitution in tests.

A source adapter is the leaf of the pipeline: it wraps one backend and
returns a bounded, time-boxed list of scored candidates. The narrow
capability protocols (search, graph, episode, taxonomy) describe what a
storage backend can do; one concrete adapter composes them by delegation
(see :mod:`fanout_rag.adapters.store`).

Pattern: Protocol duck typing (CODING_PATTERNS_ANALYSIS.md)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from fanout_rag.core.constants import DEFAULT_READ_PERMISSION, TENANT_PLACEHOLDER
from fanout_rag.schemas.retrieval_models import ScoreSemantics, SourceType


if TYPE_CHECKING:
    from fanout_rag.schemas.retrieval_models import Candidate, Query, TenantScope


# =============================================================================
# Adapter Descriptor / Response
# =============================================================================


@dataclass(frozen=True)
class AdapterDescriptor:
    """What an adapter advertises to the dispatcher and fusion engine.

    Attributes:
        name: Unique adapter name (registry key).
        source_type: Source type of every candidate it returns.
        score_semantics: How raw scores are to be read when normalizing.
        required_permission: Read permission a caller must hold; the
            ``{tenant}`` placeholder is replaced by the query tenant. None
            means the adapter declares no requirement.
        supports_streaming: Whether the backend can stream results.
        enabled: Disabled adapters are never dispatched to.
    """

    name: str
    source_type: SourceType
    score_semantics: ScoreSemantics = ScoreSemantics.SIMILARITY
    required_permission: str | None = DEFAULT_READ_PERMISSION
    supports_streaming: bool = False
    enabled: bool = True

    def permission_for(self, tenant_id: str) -> str | None:
        """Concrete permission string for a tenant."""
        if self.required_permission is None:
            return None
        return self.required_permission.replace(TENANT_PLACEHOLDER, tenant_id)


@dataclass(frozen=True)
class AdapterResponse:
    """Candidates an adapter produced before returning.

    Attributes:
        candidates: Candidates in the adapter's own ranked order.
        timed_out: The deadline passed and the list is partial.
        error: Non-fatal backend error the adapter absorbed.
    """

    candidates: tuple[Candidate, ...] = ()
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "candidates", tuple(self.candidates))


@runtime_checkable
class SourceAdapterProtocol(Protocol):
    """Protocol for a retrieval source adapter.

    Contract:
        - Return no later than ``deadline`` (a ``time.monotonic()`` reading);
          if it passes, return what is available with ``timed_out=True``.
        - Never return candidates outside ``scope``.
        - Raise on hard failure; the dispatcher isolates it.
    """

    @property
    def descriptor(self) -> AdapterDescriptor:
        ...

    async def fetch(
        self,
        query: Query,
        scope: TenantScope,
        deadline: float,
    ) -> AdapterResponse:
        ...


# =============================================================================
# Storage Capabilities
# =============================================================================


@dataclass(frozen=True)
class StoreHit:
    """A raw hit from a storage backend, before it becomes a Candidate."""

    id: str
    content: str
    score: float
    tenant_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    required_permissions: frozenset[str] = field(default_factory=frozenset)
    embedding: tuple[float, ...] | None = None


@runtime_checkable
class SearchCapability(Protocol):
    """Vector or full-text search over indexed chunks."""

    async def search(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> Sequence[StoreHit]:
        ...


@runtime_checkable
class GraphCapability(Protocol):
    """Entity-graph traversal; hit scores are hop depths.

    Only entities tagged with one of ``categories`` are returned; an empty
    set means no category restriction.
    """

    async def traverse(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> Sequence[StoreHit]:
        ...


@runtime_checkable
class EpisodeCapability(Protocol):
    """Recent episodic records (conversations, events, live feeds).

    ``categories`` restricts episodes the same way as for graph traversal.
    """

    async def recent_episodes(
        self,
        text: str,
        tenant_id: str,
        limit: int,
        categories: frozenset[str],
        timeout: float,
    ) -> Sequence[StoreHit]:
        ...


@runtime_checkable
class TaxonomyCapability(Protocol):
    """Resolves category filters to the concrete category ids to search."""

    async def expand(self, categories: frozenset[str], tenant_id: str) -> frozenset[str]:
        ...
