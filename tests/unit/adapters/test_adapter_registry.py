"""Unit Tests for the AdapterRegistry."""

from __future__ import annotations

import pytest

from fanout_rag.adapters.fake import FakeSourceAdapter
from fanout_rag.adapters.registry import AdapterRegistry
from fanout_rag.core.exceptions import AdapterNotRegisteredError, ConfigurationError
from fanout_rag.schemas.retrieval_models import SourceType
from tests.fakes.builders import make_descriptor


@pytest.fixture
def registry() -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register("vector", lambda: FakeSourceAdapter(make_descriptor("vector")))
    registry.register(
        "text", lambda: FakeSourceAdapter(make_descriptor("text", SourceType.FULL_TEXT))
    )
    return registry


class TestRegistration:
    def test_names_in_registration_order(self, registry: AdapterRegistry) -> None:
        assert registry.names() == ["vector", "text"]
        assert "vector" in registry
        assert len(registry) == 2

    def test_duplicate_name_rejected(self, registry: AdapterRegistry) -> None:
        with pytest.raises(ConfigurationError):
            registry.register("vector", lambda: FakeSourceAdapter(make_descriptor("vector")))


class TestBuild:
    def test_build_all_when_no_names(self, registry: AdapterRegistry) -> None:
        adapters = registry.build()

        assert [a.descriptor.name for a in adapters] == ["vector", "text"]

    def test_build_selected(self, registry: AdapterRegistry) -> None:
        adapters = registry.build(["text"])

        assert [a.descriptor.name for a in adapters] == ["text"]

    def test_unknown_name(self, registry: AdapterRegistry) -> None:
        with pytest.raises(AdapterNotRegisteredError) as exc_info:
            registry.build(["graph"])

        assert exc_info.value.name == "graph"

    def test_factory_name_mismatch(self) -> None:
        registry = AdapterRegistry()
        registry.register("vector", lambda: FakeSourceAdapter(make_descriptor("other")))

        with pytest.raises(ConfigurationError):
            registry.create("vector")

    def test_each_build_creates_fresh_adapters(self, registry: AdapterRegistry) -> None:
        assert registry.create("vector") is not registry.create("vector")
