"""Retrieval Exception Hierarchy.

Defines RetrievalError base and derived exceptions.

Only AuthorizationDeniedError ever reaches a caller of the pipeline. The
adapter and rerank errors are raised inside their stage, recorded in the
result metrics and absorbed.

Anti-Patterns Avoided (per CODING_PATTERNS_ANALYSIS.md):
- #7: Exception shadowing - no TimeoutError, ConnectionError, PermissionError
- #13: Exception chaining via __cause__
"""

from __future__ import annotations

from collections.abc import Iterable


class RetrievalError(Exception):
    """Base exception for all retrieval pipeline errors.

    Attributes:
        message: Human-readable error description.
        cause: Original exception that caused this error (optional).
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class AuthorizationDeniedError(RetrievalError):
    """Raised when the caller's tenant scope cannot serve the query at all.

    Distinct from an empty result: the caller must be told the request was
    refused, not that nothing matched.

    Attributes:
        tenant_id: Tenant the caller presented.
        missing_permissions: Permissions that would have been required.
        reason: Short machine-readable reason code.
    """

    def __init__(
        self,
        message: str,
        tenant_id: str,
        missing_permissions: Iterable[str] = (),
        reason: str = "insufficient_scope",
    ) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
        self.missing_permissions = tuple(sorted(set(missing_permissions)))
        self.reason = reason


class AdapterFailureError(RetrievalError):
    """Raised when a source adapter fails (network, backend, bad payload)."""

    def __init__(
        self,
        message: str,
        adapter: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.adapter = adapter


class AdapterTimeoutError(AdapterFailureError):
    """Raised when a source adapter exceeds its time budget.

    NOT named TimeoutError to avoid shadowing builtins.TimeoutError.
    """

    def __init__(
        self,
        message: str,
        adapter: str,
        timeout_seconds: float | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, adapter, cause)
        self.timeout_seconds = timeout_seconds


class RerankServiceError(RetrievalError):
    """Raised when the cross-encoder service errors or returns garbage."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.url = url


class RerankTimeoutError(RerankServiceError):
    """Raised when the cross-encoder call exceeds its sub-deadline."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.timeout_seconds = timeout_seconds


class ConfigurationError(RetrievalError):
    """Raised when pipeline configuration or overrides are invalid.

    Attributes:
        field: Name of the offending setting.
        value: The rejected value.
    """

    def __init__(self, message: str, field: str, value: object = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class AdapterNotRegisteredError(RetrievalError):
    """Raised when configuration names an adapter the registry does not know."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Adapter '{name}' is not registered")
        self.name = name
