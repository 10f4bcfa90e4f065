"""CLI entry point: python -m benchmarks.rebac.run

Usage:
    python -m benchmarks.rebac.run                          # CSV dataset in ./data, all strategies
    python -m benchmarks.rebac.run --strategy streaming     # Single strategy
    python -m benchmarks.rebac.run --generate               # Generate (RLP_* settings), write CSV, run
    python -m benchmarks.rebac.run --generate --generate-only --data-dir /tmp/rebac
    python -m benchmarks.rebac.run --data-dir ~/rebac-data --results-dir /tmp/out

Exit codes: 0 all answers matched, 1 mismatched answers, 2 dataset or graph error.
"""

from __future__ import annotations

import argparse
import logging
import sys

from benchmarks.rebac.config import BenchmarkSettings, GeneratorSettings
from benchmarks.rebac.datasets.csv_loader import CsvDataset, write_csv_dataset
from benchmarks.rebac.datasets.synthetic import SyntheticDataset
from benchmarks.rebac.errors import RebacError
from benchmarks.rebac.runner import run_benchmark
from benchmarks.rebac.strategies import STRATEGY_NAMES

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ReBAC permission closure / resolution benchmark",
    )
    parser.add_argument(
        "--strategy",
        choices=STRATEGY_NAMES,
        action="append",
        help="Run only this strategy (repeatable; default: BENCH_STRATEGIES)",
    )
    parser.add_argument(
        "--generate",
        action="store_true",
        help="Generate a synthetic dataset into --data-dir before running",
    )
    parser.add_argument(
        "--generate-only",
        action="store_true",
        help="With --generate: write the CSV files and exit",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override RLP_RANDOM_SEED for --generate",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override dataset directory (default: BENCH_DATA_DIR or ./data)",
    )
    parser.add_argument(
        "--results-dir",
        default=None,
        help="Override results directory (default: benchmarks/results)",
    )
    parser.add_argument(
        "--check-iterations",
        type=int,
        default=None,
        help="Override BENCH_CHECK_ITERATIONS",
    )
    parser.add_argument(
        "--lookup-iterations",
        type=int,
        default=None,
        help="Override BENCH_LOOKUP_ITERATIONS",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def apply_overrides(settings: BenchmarkSettings, args: argparse.Namespace) -> BenchmarkSettings:
    """Return ``settings`` with CLI flags applied (settings are immutable)."""
    overrides: dict[str, object] = {}
    if args.strategy:
        overrides["strategies"] = ",".join(dict.fromkeys(args.strategy))
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.results_dir:
        overrides["results_dir"] = args.results_dir
    if args.check_iterations is not None:
        overrides["check_iterations"] = max(args.check_iterations, 1)
    if args.lookup_iterations is not None:
        overrides["lookup_iterations"] = max(args.lookup_iterations, 1)
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = apply_overrides(BenchmarkSettings(), args)
    dataset = CsvDataset(settings.data_dir)

    try:
        if args.generate:
            generator = GeneratorSettings()
            if args.seed is not None:
                generator = generator.model_copy(update={"random_seed": args.seed})
            snapshot = SyntheticDataset(generator).load()
            counts = write_csv_dataset(snapshot, settings.data_dir)
            logger.info("Wrote %d CSV files to %s", len(counts), settings.data_dir)
            if args.generate_only:
                return 0

        result = run_benchmark(settings, dataset)
    except (RebacError, FileNotFoundError) as exc:
        logger.error("Benchmark aborted: %s", exc)
        return 2

    # Print summary to stdout
    print("\n" + "=" * 72)
    print("REBAC BENCHMARK RESULTS")
    print("=" * 72)
    for strategy in result.strategies:
        print(f"  {strategy.strategy} (setup {strategy.setup_ms:.1f}ms)")
        for s in strategy.scenarios:
            if s.latency is None:
                print(f"    {s.scenario:38s}  skipped ({s.skipped})")
                continue
            print(
                f"    {s.scenario:38s}  mean {s.latency.mean_ms:8.3f}ms  "
                f"p95 {s.latency.p95_ms:8.3f}ms  mismatches {s.mismatches}"
            )
    print("=" * 72)

    return 1 if result.mismatches else 0


if __name__ == "__main__":
    sys.exit(main())
