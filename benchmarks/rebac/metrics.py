"""Latency collection and percentile statistics."""

from __future__ import annotations

import statistics
import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager

from benchmarks.rebac.results import LatencyStats


class LatencyCollector:
    """Collect operation latencies via context manager.

    Usage:
        collector = LatencyCollector("check_manage_direct_user")
        for user_id, resource_id in pairs:
            with collector.measure():
                strategy.check(user_id, resource_id, "manage")
        stats = collector.stats()
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._samples_ns: list[int] = []

    @contextmanager
    def measure(self) -> Generator[None, None, None]:
        """Time a single operation using perf_counter_ns."""
        start = time.perf_counter_ns()
        yield
        self._samples_ns.append(time.perf_counter_ns() - start)

    def add_ms(self, value_ms: float) -> None:
        self._samples_ns.append(int(value_ms * 1_000_000))

    def __len__(self) -> int:
        return len(self._samples_ns)

    def stats(self) -> LatencyStats:
        """Compute percentile statistics from collected samples.

        Raises:
            ValueError: If no samples have been collected.
        """
        stats = compute_latency([ns / 1_000_000 for ns in self._samples_ns])
        if stats is None:
            raise ValueError(f"LatencyCollector({self.name!r}): no samples collected")
        return stats


def percentile(sorted_ms: Sequence[float], pct: float) -> float:
    """Nearest-rank-below percentile of an ascending sequence."""
    n = len(sorted_ms)
    idx = int(pct / 100 * (n - 1))
    return sorted_ms[min(idx, n - 1)]


def compute_latency(samples_ms: Sequence[float]) -> LatencyStats | None:
    """Latency percentile stats, or None for an empty sample."""
    if not samples_ms:
        return None

    sorted_ms = sorted(samples_ms)
    return LatencyStats(
        count=len(sorted_ms),
        min_ms=sorted_ms[0],
        max_ms=sorted_ms[-1],
        p50_ms=percentile(sorted_ms, 50),
        p95_ms=percentile(sorted_ms, 95),
        p99_ms=percentile(sorted_ms, 99),
        mean_ms=statistics.mean(sorted_ms),
    )
