"""Test configuration and shared fixtures.

Pattern: Pytest fixtures, conftest.py
"""

from __future__ import annotations

import pytest

from fanout_rag.core.config import Settings
from fanout_rag.retrieval.config import PipelineConfig
from fanout_rag.schemas.retrieval_models import Query, TenantScope
from tests.fakes.builders import make_query, make_scope


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        search_service_url="http://search.test",
        rerank_service_url="http://rerank.test",
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Default pipeline configuration."""
    return PipelineConfig()


# ============================================================================
# Query Fixtures
# ============================================================================


@pytest.fixture
def scope() -> TenantScope:
    """Tenant t1 caller holding t1:read."""
    return make_scope("t1", "t1:read")


@pytest.fixture
def query(scope: TenantScope) -> Query:
    """The standard neural-network query for tenant t1."""
    return make_query("how to train a neural network", scope)
