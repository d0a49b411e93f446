"""Tenant Isolation Guard.

Cross-cutting access policy, applied at three points of every query:

1. ``authorize`` - before dispatch. Rejects the query outright when the
   scope does not belong to the query's tenant, when the caller explicitly
   asked for a source it may not read, or when none of the requested
   adapters is readable. Unreadable adapters are otherwise dropped.
2. ``admit`` - on every adapter's output, before fan-in. Drops candidates of
   a foreign tenant or whose required read permissions (the candidate's own
   plus the adapter's declared one) are not covered by the caller. Adapters
   are expected to pre-filter; this check runs regardless.
3. ``screen`` - on the final list, right before emission.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, TypeVar

from fanout_rag.core.exceptions import AuthorizationDeniedError
from fanout_rag.core.logging import get_logger
from fanout_rag.schemas.retrieval_models import (
    Candidate,
    PipelineStage,
    ProvenanceStep,
    RerankedCandidate,
)


if TYPE_CHECKING:
    from fanout_rag.adapters.protocols import AdapterDescriptor, SourceAdapterProtocol
    from fanout_rag.schemas.retrieval_models import Query, TenantScope


logger = get_logger(__name__)

GUARD_ACTOR = "tenant_guard"

A = TypeVar("A", bound="SourceAdapterProtocol")


class TenantIsolationGuard:
    """Enforces tenant and permission boundaries on a query."""

    def authorize(self, query: Query, adapters: Sequence[A]) -> list[A]:
        """Return the adapters this query may be dispatched to.

        Raises:
            AuthorizationDeniedError: The query cannot be served at all.
        """
        scope = query.scope
        if not scope.tenant_id or scope.tenant_id != query.tenant_id:
            raise AuthorizationDeniedError(
                "Caller scope does not belong to the query tenant",
                tenant_id=scope.tenant_id,
                reason="tenant_mismatch",
            )

        requested = self.requested(query, adapters)
        permitted: list[A] = []
        missing: set[str] = set()
        for adapter in requested:
            permission = adapter.descriptor.permission_for(scope.tenant_id)
            if permission is None or permission in scope.permissions:
                permitted.append(adapter)
            else:
                missing.add(permission)

        self._check_explicit_sources(query, requested, permitted, missing)

        if requested and not permitted:
            raise AuthorizationDeniedError(
                "Caller holds no read permission for any requested source",
                tenant_id=scope.tenant_id,
                missing_permissions=missing,
            )
        if missing:
            logger.info(
                "adapters_not_permitted",
                query_id=query.query_id,
                tenant_id=scope.tenant_id,
                missing_permissions=sorted(missing),
            )
        return permitted

    @staticmethod
    def requested(query: Query, adapters: Iterable[A]) -> list[A]:
        """Enabled adapters whose source type the query asks for."""
        overrides = query.overrides
        selected: list[A] = []
        for adapter in adapters:
            descriptor = adapter.descriptor
            if not descriptor.enabled:
                continue
            if overrides.enabled_sources is not None and (
                descriptor.source_type not in overrides.enabled_sources
            ):
                continue
            if descriptor.source_type in overrides.disabled_sources:
                continue
            selected.append(adapter)
        return selected

    def _check_explicit_sources(
        self,
        query: Query,
        requested: Sequence[A],
        permitted: Sequence[A],
        missing: set[str],
    ) -> None:
        explicit = query.overrides.enabled_sources
        if not explicit:
            return
        readable = {a.descriptor.source_type for a in permitted}
        offered = {a.descriptor.source_type for a in requested}
        denied = sorted(s.value for s in (explicit & offered) - readable)
        if denied:
            raise AuthorizationDeniedError(
                f"Caller may not read requested sources: {', '.join(denied)}",
                tenant_id=query.scope.tenant_id,
                missing_permissions=missing,
            )

    def admit(
        self,
        scope: TenantScope,
        descriptor: AdapterDescriptor,
        candidates: Iterable[Candidate],
    ) -> tuple[list[Candidate], int]:
        """Filter one adapter's candidates at ingestion.

        Returns:
            (admitted candidates with an isolation provenance step, rejected count)
        """
        adapter_permission = descriptor.permission_for(scope.tenant_id)
        admitted: list[Candidate] = []
        rejected = 0
        for candidate in candidates:
            if self._allowed(scope, candidate, adapter_permission):
                admitted.append(
                    candidate.with_provenance(
                        ProvenanceStep(PipelineStage.ISOLATION, GUARD_ACTOR, "admitted")
                    )
                )
            else:
                rejected += 1
        if rejected:
            logger.warning(
                "candidates_rejected",
                adapter=descriptor.name,
                tenant_id=scope.tenant_id,
                rejected=rejected,
            )
        return admitted, rejected

    def screen(
        self, scope: TenantScope, candidates: Iterable[RerankedCandidate]
    ) -> list[RerankedCandidate]:
        """Last check before emission; drops anything out of scope."""
        kept: list[RerankedCandidate] = []
        for item in candidates:
            if self._allowed(scope, item.candidate, None):
                kept.append(item)
            else:
                logger.error(
                    "out_of_scope_candidate_at_emission",
                    content_id=item.content_id,
                    tenant_id=scope.tenant_id,
                )
        return kept

    @staticmethod
    def _allowed(
        scope: TenantScope,
        candidate: Candidate,
        adapter_permission: str | None,
    ) -> bool:
        if candidate.tenant_id != scope.tenant_id:
            return False
        required = set(candidate.required_permissions)
        if adapter_permission:
            required.add(adapter_permission)
        return scope.covers(required)
