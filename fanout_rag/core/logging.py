"""Structured logging for the retrieval service.

structlog renders JSON in production/staging and a console format
elsewhere. Every entry carries the service context, and entries emitted
inside :func:`query_context` also carry the query and tenant ids.

Keys starting with ``_`` are tenant-internal (the same rule as result
metadata) and are stripped from every entry before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from fanout_rag import __version__
from fanout_rag.core.config import Settings, get_settings
from fanout_rag.core.constants import INTERNAL_METADATA_PREFIX


JSON_ENVIRONMENTS = frozenset({"production", "staging"})
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_service_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    settings = get_settings()
    event_dict["service"] = settings.service_name
    event_dict["environment"] = settings.environment
    event_dict["version"] = __version__
    return event_dict


def drop_internal_keys(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Remove tenant-internal keys, including inside dict values."""
    cleaned: EventDict = {}
    for key, value in event_dict.items():
        if str(key).startswith(INTERNAL_METADATA_PREFIX):
            continue
        if isinstance(value, dict):
            value = {
                k: v for k, v in value.items() if not str(k).startswith(INTERNAL_METADATA_PREFIX)
            }
        cleaned[key] = value
    return cleaned


def build_processors(use_json: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        drop_internal_keys,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if use_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=build_processors(settings.environment in JSON_ENVIRONMENTS),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # clients, adapters and API handlers log through stdlib logging
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def query_context(query_id: str, tenant_id: str, **extra: Any) -> Iterator[None]:
    """Bind query and tenant ids to every structlog entry in this task."""
    with structlog.contextvars.bound_contextvars(query_id=query_id, tenant_id=tenant_id, **extra):
        yield


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Example:
        ```python
        logger = get_logger(__name__)
        logger.info("adapter_outcome", adapter="pgvector", status="ok")
        ```
    """
    return structlog.get_logger(name)


Logger = structlog.BoundLogger
