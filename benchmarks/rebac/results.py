"""Immutable result models for benchmark runs."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LatencyStats:
    """Latency percentile statistics."""

    count: int
    min_ms: float
    max_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    mean_ms: float


@dataclass(frozen=True)
class BenchUsers:
    """Users driving the enumeration scenarios."""

    heavy_manage_user: int | None
    regular_view_user: int | None
    heavy_manage_count: int = 0
    regular_view_count: int = 0


@dataclass(frozen=True)
class ScenarioResult:
    """One scenario executed against one strategy."""

    strategy: str
    scenario: str
    iterations: int
    mismatches: int
    result_size: int = 0  # resources returned by the last lookup
    latency: LatencyStats | None = None
    skipped: str = ""  # reason, when the scenario had nothing to run

    @property
    def ok(self) -> bool:
        return self.mismatches == 0


@dataclass(frozen=True)
class StrategyResult:
    """All scenarios for one strategy plus its setup cost."""

    strategy: str
    setup_ms: float
    scenarios: tuple[ScenarioResult, ...]

    @property
    def mismatches(self) -> int:
        return sum(s.mismatches for s in self.scenarios)


@dataclass(frozen=True)
class BenchmarkResult:
    """Aggregated result of one benchmark run."""

    dataset: str
    graph_counts: dict[str, int]
    phases_ms: dict[str, float]  # index_build, closure_compile
    bench_users: BenchUsers
    strategies: tuple[StrategyResult, ...] = ()
    timestamp: str = ""
    settings: dict[str, object] = field(default_factory=dict)

    @property
    def mismatches(self) -> int:
        return sum(s.mismatches for s in self.strategies)
