"""Root conftest.py: shared fixtures for the permission test suite.

Fixture scoping strategy:
    session:   TestSettings, the stress-sized synthetic graph
    function:  Strategies built per test (they are cheap and hold state)

Provides:
    - settings: Pydantic TestSettings loaded from env / .env.test
    - strategy_name: Parametrized over every materialization strategy
    - make_strategy: Factory building the parametrized strategy for a graph
    - mixed_snapshot: Two-org graph exercising every edge kind
    - stress_snapshot: Deterministic synthetic graph sized by TestSettings
"""

from __future__ import annotations

import os
from collections.abc import Callable

import pytest
from hypothesis import HealthCheck, Phase
from hypothesis import settings as hypothesis_settings

from benchmarks.rebac.config import GeneratorSettings
from benchmarks.rebac.datasets.synthetic import SyntheticDataset
from benchmarks.rebac.graph import GraphSnapshot
from benchmarks.rebac.strategies import (
    STRATEGY_NAMES,
    MaterializationStrategy,
    build_strategy,
)
from tests.config import TestSettings
from tests.helpers.graph_builder import mixed_graph

# ---------------------------------------------------------------------------
# Hypothesis profiles
# ---------------------------------------------------------------------------

hypothesis_settings.register_profile(
    "dev",
    max_examples=10,
    deadline=500,
)
hypothesis_settings.register_profile(
    "ci",
    max_examples=1000,
    deadline=None,
    derandomize=True,
    print_blob=True,
    suppress_health_check=[HealthCheck.too_slow],
)
hypothesis_settings.register_profile(
    "thorough",
    max_examples=100_000,
    deadline=None,
    derandomize=True,
    print_blob=True,
    suppress_health_check=[HealthCheck.too_slow],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
hypothesis_settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


# ---------------------------------------------------------------------------
# Session-scoped fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def settings() -> TestSettings:
    """Load test settings from environment / .env.test file."""
    return TestSettings()


@pytest.fixture(scope="session")
def stress_snapshot(settings: TestSettings) -> GraphSnapshot:
    """Deterministic synthetic graph shared by the stress tests."""
    generator = GeneratorSettings(
        num_orgs=settings.stress_orgs,
        users_per_org=settings.stress_users_per_org,
        groups_per_org=settings.stress_groups_per_org,
        resources_per_org=settings.stress_resources_per_org,
        admins_per_org=2,
        viewer_users_per_resource=3,
        nested_groups_per_org=4,
        random_seed=settings.stress_seed,
    )
    return SyntheticDataset(generator).load()


# ---------------------------------------------------------------------------
# Function-scoped fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=STRATEGY_NAMES)
def strategy_name(request: pytest.FixtureRequest) -> str:
    """Each test using this runs once per materialization strategy."""
    return request.param


@pytest.fixture
def make_strategy(strategy_name: str) -> Callable[[GraphSnapshot], MaterializationStrategy]:
    """Factory: build the parametrized strategy (precomputed starts refreshed)."""

    def _make(graph: GraphSnapshot) -> MaterializationStrategy:
        return build_strategy(strategy_name, graph)

    return _make


@pytest.fixture
def mixed_snapshot() -> GraphSnapshot:
    return mixed_graph()
