"""Orchestrate a read benchmark: load -> index -> compile -> sample -> run -> report."""

from __future__ import annotations

import logging
import random
import time
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from benchmarks.rebac.closure import ClosureTable, compile_closure
from benchmarks.rebac.config import BenchmarkSettings
from benchmarks.rebac.datasets.base import DatasetSource
from benchmarks.rebac.graph import GraphIndex
from benchmarks.rebac.metrics import LatencyCollector
from benchmarks.rebac.models import (
    MANAGE,
    MANAGER,
    SUBJECT_GROUP,
    SUBJECT_USER,
    VIEW,
    VIEWER,
)
from benchmarks.rebac.report import generate_report
from benchmarks.rebac.resolver import PermissionResolver
from benchmarks.rebac.results import (
    BenchmarkResult,
    BenchUsers,
    ScenarioResult,
    StrategyResult,
)
from benchmarks.rebac.strategies import MaterializationStrategy, build_strategy

logger = logging.getLogger(__name__)

CHECK_MANAGE_DIRECT_USER = "check_manage_direct_user"
CHECK_MANAGE_ORG_ADMIN = "check_manage_org_admin"
CHECK_VIEW_VIA_GROUP_MEMBER = "check_view_via_group_member"
LOOKUP_MANAGE_HEAVY_USER = "lookup_resources_manage_heavy_user"
LOOKUP_VIEW_REGULAR_USER = "lookup_resources_view_regular_user"
SCENARIOS = (
    CHECK_MANAGE_DIRECT_USER,
    CHECK_MANAGE_ORG_ADMIN,
    CHECK_VIEW_VIA_GROUP_MEMBER,
    LOOKUP_MANAGE_HEAVY_USER,
    LOOKUP_VIEW_REGULAR_USER,
)

Pair = tuple[int, int]  # (user_id, resource_id)


@dataclass(frozen=True)
class Workload:
    """Sampled inputs shared by every strategy, with reference answers."""

    direct_manager_pairs: tuple[Pair, ...]
    org_admin_pairs: tuple[Pair, ...]
    group_view_pairs: tuple[Pair, ...]
    bench_users: BenchUsers
    expected_manage: frozenset[int] = frozenset()
    expected_view: frozenset[int] = frozenset()


# ---------------------------------------------------------------------------
# Workload preparation
# ---------------------------------------------------------------------------


def prepare_workload(
    index: GraphIndex, table: ClosureTable, settings: BenchmarkSettings
) -> Workload:
    """Sample allowed (user, resource) pairs and pick the lookup users.

    Every sampled pair is allowed by construction, so any ``False`` from a
    strategy is counted as a mismatch.
    """
    start = time.perf_counter()
    rng = random.Random(settings.sample_seed)
    limit = settings.lookup_sample_limit

    # Direct manager ACL entries.
    direct = [
        (user_id, resource_id)
        for resource_id, users in sorted(index.acl_subjects[(SUBJECT_USER, MANAGER)].items())
        for user_id in sorted(users)
    ]

    # One admin per resource, round-robin within the org.
    org_admin: list[Pair] = []
    admin_turn: dict[int, int] = defaultdict(int)
    for resource_id in sorted(index.resource_org):
        org_id = index.resource_org[resource_id]
        admins = sorted(index.org_admins.get(org_id, ()))
        if not admins:
            continue
        org_admin.append((admins[admin_turn[org_id] % len(admins)], resource_id))
        admin_turn[org_id] += 1

    # One effective member per (group, resource) viewer ACL entry.
    group_view: list[Pair] = []
    member_turn: dict[int, int] = defaultdict(int)
    for resource_id, groups in sorted(index.acl_subjects[(SUBJECT_GROUP, VIEWER)].items()):
        for group_id in sorted(groups):
            members = sorted(table.effective_members(group_id))
            if not members:
                continue
            group_view.append((members[member_turn[group_id] % len(members)], resource_id))
            member_turn[group_id] += 1

    resolver = PermissionResolver(index, table)
    bench_users = pick_bench_users(index, resolver, settings)
    expected_manage: frozenset[int] = frozenset()
    expected_view: frozenset[int] = frozenset()
    if bench_users.heavy_manage_user is not None:
        expected_manage = resolver.list_resources(bench_users.heavy_manage_user, MANAGE)
    if bench_users.regular_view_user is not None:
        expected_view = resolver.list_resources(bench_users.regular_view_user, VIEW)

    workload = Workload(
        direct_manager_pairs=_sample(direct, limit, rng),
        org_admin_pairs=_sample(org_admin, limit, rng),
        group_view_pairs=_sample(group_view, limit, rng),
        bench_users=bench_users,
        expected_manage=expected_manage,
        expected_view=expected_view,
    )
    logger.info(
        "Workload prepared in %.1fms: directManagerPairs=%d orgAdminPairs=%d "
        "groupViewPairs=%d heavyManageUser=%s regularViewUser=%s",
        (time.perf_counter() - start) * 1000,
        len(direct),
        len(org_admin),
        len(group_view),
        bench_users.heavy_manage_user,
        bench_users.regular_view_user,
    )
    return workload


def pick_bench_users(
    index: GraphIndex, resolver: PermissionResolver, settings: BenchmarkSettings
) -> BenchUsers:
    """Heavy user = most manageable resources; regular user = median viewer.

    ``lookupres_manage_user`` / ``lookupres_view_user`` override the picks.
    Ties break toward the smaller user id.
    """
    user_ids = sorted(index.user_ids)
    if not user_ids:
        return BenchUsers(None, None)

    manage_counts = {u: len(resolver.list_resources(u, MANAGE)) for u in user_ids}
    heavy = min(user_ids, key=lambda u: (-manage_counts[u], u))

    others = [u for u in user_ids if u != heavy] or [heavy]
    view_counts = {u: len(resolver.list_resources(u, VIEW)) for u in others}
    ranked = sorted(others, key=lambda u: (view_counts[u], u))
    regular = ranked[len(ranked) // 2]

    if settings.lookupres_manage_user:
        heavy = settings.lookupres_manage_user
        index.require_user(heavy)
    if settings.lookupres_view_user:
        regular = settings.lookupres_view_user
        index.require_user(regular)

    return BenchUsers(
        heavy_manage_user=heavy,
        regular_view_user=regular,
        heavy_manage_count=len(resolver.list_resources(heavy, MANAGE)),
        regular_view_count=len(resolver.list_resources(regular, VIEW)),
    )


def _sample(pairs: list[Pair], limit: int, rng: random.Random) -> tuple[Pair, ...]:
    if len(pairs) <= limit:
        return tuple(pairs)
    return tuple(rng.sample(pairs, limit))


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def run_check_scenario(
    strategy: MaterializationStrategy,
    scenario: str,
    pairs: Sequence[Pair],
    permission: str,
    iterations: int,
) -> ScenarioResult:
    """Cycle through ``pairs`` for ``iterations`` checks; each must be allowed."""
    if not pairs:
        logger.info("[%s] [%s] skipped: no sample pairs", strategy.name, scenario)
        return ScenarioResult(strategy.name, scenario, 0, 0, skipped="no sample pairs")

    logger.info(
        "[%s] [%s] iterations=%d samplePairs=%d",
        strategy.name,
        scenario,
        iterations,
        len(pairs),
    )
    collector = LatencyCollector(scenario)
    mismatches = 0
    for i in range(iterations):
        user_id, resource_id = pairs[i % len(pairs)]
        with collector.measure():
            allowed = strategy.check(user_id, resource_id, permission)
        if not allowed:
            mismatches += 1
            logger.debug(
                "[%s] [%s] denied user=%d resource=%d",
                strategy.name,
                scenario,
                user_id,
                resource_id,
            )

    stats = collector.stats()
    logger.info(
        "[%s] [%s] DONE: iters=%d mismatches=%d mean=%.3fms p95=%.3fms",
        strategy.name,
        scenario,
        iterations,
        mismatches,
        stats.mean_ms,
        stats.p95_ms,
    )
    return ScenarioResult(strategy.name, scenario, iterations, mismatches, latency=stats)


def run_lookup_scenario(
    strategy: MaterializationStrategy,
    scenario: str,
    user_id: int | None,
    permission: str,
    expected: frozenset[int],
    iterations: int,
) -> ScenarioResult:
    """Enumerate ``user_id``'s resources repeatedly and compare with ``expected``."""
    if user_id is None:
        logger.info("[%s] [%s] skipped: no user specified", strategy.name, scenario)
        return ScenarioResult(strategy.name, scenario, 0, 0, skipped="no user specified")

    logger.info(
        "[%s] [%s] iterations=%d user=%d", strategy.name, scenario, iterations, user_id
    )
    collector = LatencyCollector(scenario)
    mismatches = 0
    found: frozenset[int] = frozenset()
    for i in range(iterations):
        with collector.measure():
            found = strategy.list_resources(user_id, permission)
        if found != expected:
            mismatches += 1
        logger.debug(
            "[%s] [%s] iter=%d resources=%d", strategy.name, scenario, i, len(found)
        )

    stats = collector.stats()
    logger.info(
        "[%s] [%s] DONE: iters=%d lastCount=%d mismatches=%d mean=%.3fms",
        strategy.name,
        scenario,
        iterations,
        len(found),
        mismatches,
        stats.mean_ms,
    )
    return ScenarioResult(
        strategy.name,
        scenario,
        iterations,
        mismatches,
        result_size=len(found),
        latency=stats,
    )


def run_strategy(
    name: str, index: GraphIndex, workload: Workload, settings: BenchmarkSettings
) -> StrategyResult:
    """Build one strategy (refreshing it when precomputed) and run every scenario."""
    start = time.perf_counter()
    strategy = build_strategy(name, index)
    setup_ms = (time.perf_counter() - start) * 1000
    logger.info("[%s] ready in %.1fms", name, setup_ms)

    checks = settings.check_iterations
    lookups = settings.lookup_iterations
    users = workload.bench_users
    scenarios = (
        run_check_scenario(
            strategy, CHECK_MANAGE_DIRECT_USER, workload.direct_manager_pairs, MANAGE, checks
        ),
        run_check_scenario(
            strategy, CHECK_MANAGE_ORG_ADMIN, workload.org_admin_pairs, MANAGE, checks
        ),
        run_check_scenario(
            strategy, CHECK_VIEW_VIA_GROUP_MEMBER, workload.group_view_pairs, VIEW, checks
        ),
        run_lookup_scenario(
            strategy,
            LOOKUP_MANAGE_HEAVY_USER,
            users.heavy_manage_user,
            MANAGE,
            workload.expected_manage,
            lookups,
        ),
        run_lookup_scenario(
            strategy,
            LOOKUP_VIEW_REGULAR_USER,
            users.regular_view_user,
            VIEW,
            workload.expected_view,
            lookups,
        ),
    )
    return StrategyResult(strategy=name, setup_ms=setup_ms, scenarios=scenarios)


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


def graph_counts(index: GraphIndex) -> dict[str, int]:
    """Entity and edge counts for the report, keyed by a stable label."""
    counts = {
        "orgs": len(index.org_ids),
        "users": len(index.user_ids),
        "groups": len(index.group_org),
        "resources": len(index.resource_org),
        "edges": index.edge_count,
    }
    for relation, children in sorted(index.children.items()):
        counts[f"hierarchy_{relation}"] = sum(len(c) for c in children.values())
    for (subject_type, relation), subjects in sorted(index.acl_subjects.items()):
        counts[f"acl_{subject_type}_{relation}"] = sum(len(s) for s in subjects.values())
    return counts


def run_benchmark(
    settings: BenchmarkSettings, source: DatasetSource, *, write_report: bool = True
) -> BenchmarkResult:
    """Run every configured strategy against one dataset.

    1. Load the dataset snapshot
    2. Build and validate the graph index
    3. Compile the closure (rejects cyclic hierarchies)
    4. Sample the workload
    5. Run all scenarios per strategy
    6. Write report.md / report.json

    Raises:
        UnknownEntity, InvalidGraph, CyclicHierarchy, MalformedRow, FileNotFoundError:
            The dataset could not be loaded or compiled.
    """
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    logger.info("=" * 60)
    logger.info("ReBAC read benchmark: dataset=%s strategies=%s", source.name, settings.strategies)
    logger.info("=" * 60)

    snapshot = source.load()

    start = time.perf_counter()
    index = GraphIndex.build(snapshot)
    index_ms = (time.perf_counter() - start) * 1000

    start = time.perf_counter()
    table = compile_closure(index)
    compile_ms = (time.perf_counter() - start) * 1000

    workload = prepare_workload(index, table, settings)

    strategy_results = tuple(
        run_strategy(name, index, workload, settings) for name in settings.strategy_list
    )

    result = BenchmarkResult(
        dataset=source.name,
        graph_counts=graph_counts(index),
        phases_ms={"index_build": index_ms, "closure_compile": compile_ms},
        bench_users=workload.bench_users,
        strategies=strategy_results,
        timestamp=timestamp,
        settings=settings.model_dump(),
    )

    for strategy_result in strategy_results:
        if strategy_result.mismatches:
            logger.warning(
                "%s: %d mismatched answers", strategy_result.strategy, strategy_result.mismatches
            )

    if write_report:
        report_path = generate_report(result, settings.results_dir)
        logger.info("Report written to %s", report_path)

    return result
