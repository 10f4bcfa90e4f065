"""Benchmark and dataset-generator configuration via Pydantic Settings.

Loads from environment variables or a ``.env`` file. All values have
sensible defaults for a laptop-sized run.

Usage:
    settings = BenchmarkSettings()                  # BENCH_* env vars
    generator = GeneratorSettings(num_orgs=4)       # RLP_* env vars, overridable
"""

from __future__ import annotations

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from benchmarks.rebac.strategies import STRATEGY_NAMES


class BenchmarkSettings(BaseSettings):
    """Read-benchmark configuration (prefix ``BENCH_``)."""

    model_config = SettingsConfigDict(
        env_prefix="BENCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Paths ---
    data_dir: str = "data"
    results_dir: str = "benchmarks/results"

    # --- Strategies to run (comma-separated) ---
    strategies: str = ",".join(STRATEGY_NAMES)

    # --- Iterations ---
    check_iterations: int = 1000
    lookup_iterations: int = 10
    lookup_sample_limit: int = 1000

    # --- Lookup users (0 = pick automatically from the dataset) ---
    lookupres_manage_user: int = 0
    lookupres_view_user: int = 0

    # --- Sampling ---
    sample_seed: int = 42

    @field_validator("strategies")
    @classmethod
    def known_strategies(cls, v: str) -> str:
        """Reject strategy names the runner does not implement."""
        names = [s.strip() for s in v.split(",") if s.strip()]
        unknown = [s for s in names if s not in STRATEGY_NAMES]
        if unknown:
            raise ValueError(
                f"Unknown strategies {unknown}; expected a subset of {STRATEGY_NAMES}"
            )
        if not names:
            raise ValueError("At least one strategy is required")
        return ",".join(names)

    @field_validator("check_iterations", "lookup_iterations", "lookup_sample_limit")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("data_dir", "results_dir")
    @classmethod
    def expand_home(cls, v: str) -> str:
        """Expand ~ in paths."""
        if v.startswith("~"):
            return os.path.expanduser(v)
        return v

    @property
    def strategy_list(self) -> list[str]:
        """Parse comma-separated strategies into a list."""
        return [s for s in self.strategies.split(",") if s]


class GeneratorSettings(BaseSettings):
    """Synthetic dataset shape (prefix ``RLP_``).

    Counts are targets: per-org sizes are drawn from small / normal / large
    buckets around them, so the generated graph is heterogeneous.
    """

    model_config = SettingsConfigDict(
        env_prefix="RLP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    num_orgs: int = 16
    users_per_org: int = 200
    groups_per_org: int = 20
    resources_per_org: int = 2000
    groups_per_user: int = 3
    admins_per_org: int = 10
    manager_users_per_resource: int = 2
    manager_groups_per_resource: int = 1
    viewer_users_per_resource: int = 10
    viewer_groups_per_resource: int = 3
    avg_orgs_per_user: int = 2

    # Nested groups: hierarchy edges per org, always parent-before-child
    # in the org's group order, so the hierarchy is acyclic.
    nested_groups_per_org: int = 5
    manager_group_ratio: float = 0.3  # share of hierarchy edges that are manager_group
    group_managers_per_group: int = 1

    random_seed: int = 0  # 0 = derive from the clock

    @field_validator("num_orgs", "users_per_org", "avg_orgs_per_user")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @field_validator(
        "groups_per_org",
        "resources_per_org",
        "groups_per_user",
        "admins_per_org",
        "manager_users_per_resource",
        "manager_groups_per_resource",
        "viewer_users_per_resource",
        "viewer_groups_per_resource",
        "nested_groups_per_org",
        "group_managers_per_group",
    )
    @classmethod
    def non_negative(cls, v: int) -> int:
        return max(v, 0)

    @field_validator("manager_group_ratio")
    @classmethod
    def ratio_in_range(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)
