"""Unit tests for the structlog processors and query context."""

import structlog

from fanout_rag import __version__
from fanout_rag.core.config import get_settings
from fanout_rag.core.logging import (
    add_service_context,
    build_processors,
    drop_internal_keys,
    query_context,
)


class TestProcessors:
    def test_service_context_added(self) -> None:
        event = add_service_context(None, "info", {"event": "x"})

        assert event["service"] == get_settings().service_name
        assert event["environment"] == get_settings().environment
        assert event["version"] == __version__

    def test_internal_keys_dropped(self) -> None:
        event = drop_internal_keys(
            None,
            "info",
            {"event": "x", "_acl": "secret", "metadata": {"title": "T", "_owner": "o"}},
        )

        assert event == {"event": "x", "metadata": {"title": "T"}}

    def test_json_chain_ends_with_json_renderer(self) -> None:
        processors = build_processors(use_json=True)

        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert drop_internal_keys in processors

    def test_console_chain_ends_with_console_renderer(self) -> None:
        assert isinstance(build_processors(use_json=False)[-1], structlog.dev.ConsoleRenderer)


class TestQueryContext:
    def test_binds_and_clears_ids(self) -> None:
        with query_context("q-1", "t1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["query_id"] == "q-1"
            assert bound["tenant_id"] == "t1"

        assert "query_id" not in structlog.contextvars.get_contextvars()
