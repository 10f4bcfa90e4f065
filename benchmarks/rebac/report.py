"""Generate markdown + JSON benchmark report."""

from __future__ import annotations

import json
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

from benchmarks.rebac.results import BenchmarkResult, ScenarioResult


def generate_report(result: BenchmarkResult, output_dir: str | Path) -> Path:
    """Write ``report.md`` and a ``report.json`` sidecar.

    Args:
        result: Aggregated result of one run.
        output_dir: Directory to write report files (created if missing).

    Returns:
        Path to the generated markdown report.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    md_path = out / "report.md"
    md_path.write_text(_build_markdown(result), encoding="utf-8")

    json_path = out / "report.json"
    json_path.write_text(
        json.dumps(_build_json(result), indent=2, default=str), encoding="utf-8"
    )

    return md_path


def _build_markdown(result: BenchmarkResult) -> str:
    lines: list[str] = []
    lines.append("# ReBAC Permission Benchmark Report")
    lines.append("")
    lines.append(f"Generated: {time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime())}")
    lines.append(f"Dataset: {result.dataset}")
    lines.append("")

    lines.append("## Graph")
    lines.append("")
    lines.append("| Item | Count |")
    lines.append("|------|-------|")
    for label, count in result.graph_counts.items():
        lines.append(f"| {label} | {count} |")
    lines.append("")

    lines.append("## Build Phases")
    lines.append("")
    lines.append("| Phase | Time (ms) |")
    lines.append("|-------|-----------|")
    for phase, ms in result.phases_ms.items():
        lines.append(f"| {phase} | {ms:.1f} |")
    for strategy in result.strategies:
        lines.append(f"| {strategy.strategy} setup | {strategy.setup_ms:.1f} |")
    lines.append("")

    users = result.bench_users
    lines.append("## Lookup Users")
    lines.append("")
    lines.append(
        f"- **Heavy manage user**: {users.heavy_manage_user} "
        f"({users.heavy_manage_count} resources)"
    )
    lines.append(
        f"- **Regular view user**: {users.regular_view_user} "
        f"({users.regular_view_count} resources)"
    )
    lines.append("")

    # Summary: mean latency per scenario x strategy
    lines.append("## Summary (mean ms)")
    lines.append("")
    names = [s.strategy for s in result.strategies]
    lines.append("| Scenario | " + " | ".join(names) + " |")
    lines.append("|" + "|".join("---------" for _ in range(len(names) + 1)) + "|")
    scenario_order: list[str] = []
    for strategy in result.strategies:
        for scenario in strategy.scenarios:
            if scenario.scenario not in scenario_order:
                scenario_order.append(scenario.scenario)
    by_key = {
        (s.strategy, s.scenario): s for st in result.strategies for s in st.scenarios
    }
    for scenario_name in scenario_order:
        row = [scenario_name]
        for name in names:
            row.append(_mean_cell(by_key.get((name, scenario_name))))
        lines.append("| " + " | ".join(row) + " |")
    lines.append("")

    for strategy in result.strategies:
        lines.append(f"## {strategy.strategy.capitalize()} Breakdown")
        lines.append("")
        lines.append(f"- **Mismatches**: {strategy.mismatches}")
        lines.append("")
        lines.append(
            "| Scenario | Iterations | Mismatches | Results | p50 | p95 | p99 | mean |"
        )
        lines.append(
            "|----------|------------|------------|---------|-----|-----|-----|------|"
        )
        for s in strategy.scenarios:
            if s.latency is None:
                lines.append(f"| {s.scenario} | skipped: {s.skipped} | | | | | | |")
                continue
            ls = s.latency
            lines.append(
                f"| {s.scenario} | {s.iterations} | {s.mismatches} | {s.result_size} "
                f"| {ls.p50_ms:.3f} | {ls.p95_ms:.3f} | {ls.p99_ms:.3f} | {ls.mean_ms:.3f} |"
            )
        lines.append("")

    return "\n".join(lines)


def _mean_cell(scenario: ScenarioResult | None) -> str:
    if scenario is None or scenario.latency is None:
        return "-"
    cell = f"{scenario.latency.mean_ms:.3f}"
    if scenario.mismatches:
        cell += f" ({scenario.mismatches} mismatches)"
    return cell


def _build_json(result: BenchmarkResult) -> dict[str, Any]:
    """Build the JSON report structure."""
    return {
        "dataset": result.dataset,
        "timestamp": result.timestamp,
        "graph": result.graph_counts,
        "phases_ms": result.phases_ms,
        "bench_users": asdict(result.bench_users),
        "mismatches": result.mismatches,
        "strategies": [
            {
                "strategy": s.strategy,
                "setup_ms": s.setup_ms,
                "mismatches": s.mismatches,
                "scenarios": [asdict(sc) for sc in s.scenarios],
            }
            for s in result.strategies
        ],
        "settings": result.settings,
    }
