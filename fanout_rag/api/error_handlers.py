"""Error handlers for the retrieval API.

Only two pipeline conditions reach a client as errors: an authorization
refusal (403) and an invalid request or override (422). Everything else the
pipeline absorbs into a degraded result, so a 500 here means a bug.

Anti-Patterns Avoided:
- ANTI_PATTERN_ANALYSIS §3.1: No bare except clauses
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fanout_rag.core.exceptions import AuthorizationDeniedError, ConfigurationError


logger = logging.getLogger(__name__)

VALIDATION_ERROR = "ValidationError"


class ErrorResponse(BaseModel):
    """Body of every non-2xx response.

    Attributes:
        error: Error category, e.g. ``Forbidden``
        detail: Human-readable description
        code: Machine-readable code, e.g. ``INSUFFICIENT_SCOPE``
        path: Request path
        missing_permissions: Permissions the caller lacks (403 only)
    """

    error: str = Field(..., description="Error type or category")
    detail: str = Field(..., description="Human-readable error description")
    code: str | None = Field(default=None, description="Machine-readable error code")
    path: str | None = Field(default=None, description="Request path that caused the error")
    missing_permissions: list[str] | None = Field(
        default=None,
        description="Permissions the caller would need",
    )


def _error_json(request: Request, status_code: int, error: str, detail: str, **extra: Any) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, path=str(request.url.path), **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _status_name(status_code: int) -> str:
    """``503`` -> ``ServiceUnavailable``."""
    try:
        return HTTPStatus(status_code).phrase.replace(" ", "").replace("-", "")
    except ValueError:
        return "Error"


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_json(request, exc.status_code, _status_name(exc.status_code), str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Flatten pydantic errors into ``loc: msg`` pairs."""
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'Invalid value')}"
        for error in exc.errors()
    ]
    return _error_json(
        request,
        422,
        VALIDATION_ERROR,
        "; ".join(problems) or "Validation error",
        code="VALIDATION_ERROR",
    )


async def authorization_denied_handler(request: Request, exc: AuthorizationDeniedError) -> JSONResponse:
    """403 with the reason code and the permissions that were missing."""
    logger.info(
        "Retrieval refused",
        extra={"tenant_id": exc.tenant_id, "reason": exc.reason},
    )
    return _error_json(
        request,
        403,
        "Forbidden",
        exc.message,
        code=exc.reason.upper(),
        missing_permissions=list(exc.missing_permissions),
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """Per-request overrides that fail PipelineConfig validation."""
    return _error_json(request, 422, VALIDATION_ERROR, exc.message, code="INVALID_OVERRIDE")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception",
        extra={"path": str(request.url.path), "error_type": type(exc).__name__},
    )
    return _error_json(
        request,
        500,
        "InternalServerError",
        "An unexpected error occurred",
        code="INTERNAL_ERROR",
    )


# =============================================================================
# Registration Function
# =============================================================================

_HANDLERS: tuple[tuple[type[Exception], Any], ...] = (
    (HTTPException, http_exception_handler),
    (RequestValidationError, validation_exception_handler),
    (AuthorizationDeniedError, authorization_denied_handler),
    (ConfigurationError, configuration_error_handler),
    (Exception, generic_exception_handler),
)


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    for exc_class, handler in _HANDLERS:
        app.add_exception_handler(exc_class, handler)


__all__ = [
    "ErrorResponse",
    "register_error_handlers",
]
