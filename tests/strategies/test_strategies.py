"""Materialization strategy tests: precomputed generations, freshness, concurrency.

Groups: quick, auto, rebac, stress
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from benchmarks.rebac.errors import (
    CyclicHierarchy,
    IndexNotReady,
    RefreshFailed,
    UnknownEntity,
)
from benchmarks.rebac.graph import GraphIndex, GraphSnapshot
from benchmarks.rebac.models import MANAGE, VIEW
from benchmarks.rebac.strategies import (
    PRECOMPUTED,
    RECURSIVE,
    STATE_BUILDING,
    STATE_EMPTY,
    STATE_READY,
    STATE_REFRESHING,
    STREAMING,
    Generation,
    PrecomputedIndexStrategy,
    RecursiveStrategy,
    StreamingStrategy,
    build_generation,
    build_strategy,
)
from tests.config import TestSettings
from tests.helpers.assertions import assert_same_answers
from tests.helpers.graph_builder import GraphBuilder, cyclic_graph, mixed_graph


def _one_viewer_graph(viewer: int) -> GraphSnapshot:
    return (
        GraphBuilder()
        .org(1)
        .users(1, 2)
        .resource(10)
        .grant_user(10, viewer, "viewer")
        .build()
    )


# ---------------------------------------------------------------------------
# Precomputed index state machine
# ---------------------------------------------------------------------------


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestPrecomputedStateMachine:
    def test_starts_empty_and_fails_closed(self) -> None:
        strategy = PrecomputedIndexStrategy(mixed_graph())
        assert strategy.state == STATE_EMPTY
        assert strategy.generation is None
        with pytest.raises(IndexNotReady):
            strategy.check(1, 100, MANAGE)
        with pytest.raises(IndexNotReady):
            strategy.list_resources(1, VIEW)

    def test_first_refresh_builds_generation_one(self) -> None:
        strategy = PrecomputedIndexStrategy(mixed_graph())
        generation = strategy.refresh()
        assert strategy.state == STATE_READY
        assert generation.number == 1
        assert strategy.generation is generation
        assert strategy.check(1, 100, MANAGE)

    def test_generation_numbers_increase(self) -> None:
        strategy = PrecomputedIndexStrategy(mixed_graph())
        strategy.refresh()
        assert strategy.refresh().number == 2
        assert strategy.refresh().number == 3

    def test_state_during_build_and_refresh(self) -> None:
        observed: list[str] = []
        holder: dict[str, PrecomputedIndexStrategy] = {}

        def spying_builder(index: GraphIndex, number: int) -> Generation:
            observed.append(holder["strategy"].state)
            return build_generation(index, number)

        strategy = PrecomputedIndexStrategy(mixed_graph(), builder=spying_builder)
        holder["strategy"] = strategy
        strategy.refresh()
        strategy.refresh()
        assert observed == [STATE_BUILDING, STATE_REFRESHING]
        assert strategy.state == STATE_READY

    def test_reads_during_refresh_use_previous_generation(self) -> None:
        seen: list[bool] = []
        holder: dict[str, PrecomputedIndexStrategy] = {}

        def reading_builder(index: GraphIndex, number: int) -> Generation:
            if number > 1:
                seen.append(holder["strategy"].check(1, 10, VIEW))
            return build_generation(index, number)

        strategy = PrecomputedIndexStrategy(_one_viewer_graph(1), builder=reading_builder)
        holder["strategy"] = strategy
        strategy.refresh()
        strategy.load(_one_viewer_graph(2))
        strategy.refresh()
        assert seen == [True]
        assert not strategy.check(1, 10, VIEW)


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestPrecomputedStaleness:
    def test_load_is_invisible_until_refresh(self) -> None:
        strategy = build_strategy(PRECOMPUTED, _one_viewer_graph(1))
        strategy.load(_one_viewer_graph(2))
        assert strategy.check(1, 10, VIEW)
        assert not strategy.check(2, 10, VIEW)

        assert isinstance(strategy, PrecomputedIndexStrategy)
        strategy.refresh()
        assert not strategy.check(1, 10, VIEW)
        assert strategy.check(2, 10, VIEW)

    @pytest.mark.parametrize("name", [RECURSIVE, STREAMING])
    def test_live_strategies_see_load_immediately(self, name: str) -> None:
        strategy = build_strategy(name, _one_viewer_graph(1))
        strategy.load(_one_viewer_graph(2))
        assert not strategy.check(1, 10, VIEW)
        assert strategy.check(2, 10, VIEW)

    @pytest.mark.parametrize("cls", [RecursiveStrategy, StreamingStrategy])
    def test_live_strategy_rejects_cyclic_load_and_keeps_graph(self, cls: type) -> None:
        strategy = cls(_one_viewer_graph(1))
        with pytest.raises(CyclicHierarchy):
            strategy.load(cyclic_graph())
        assert strategy.check(1, 10, VIEW)


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestRefreshFailure:
    def test_failed_refresh_keeps_previous_generation(self) -> None:
        strategy = build_strategy(PRECOMPUTED, _one_viewer_graph(1))
        assert isinstance(strategy, PrecomputedIndexStrategy)
        strategy.load(cyclic_graph())

        with pytest.raises(RefreshFailed) as exc_info:
            strategy.refresh()

        assert exc_info.value.kept_generation == 1
        assert isinstance(exc_info.value.__cause__, CyclicHierarchy)
        assert strategy.state == STATE_READY
        assert strategy.generation is not None
        assert strategy.generation.number == 1
        assert strategy.check(1, 10, VIEW)

    def test_failed_first_build_stays_empty(self) -> None:
        def broken(index: GraphIndex, number: int) -> Generation:
            raise RuntimeError("disk full")

        strategy = PrecomputedIndexStrategy(mixed_graph(), builder=broken)
        with pytest.raises(RefreshFailed) as exc_info:
            strategy.refresh()
        assert exc_info.value.kept_generation is None
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert strategy.state == STATE_EMPTY
        with pytest.raises(IndexNotReady):
            strategy.check(1, 100, VIEW)

    def test_recovers_after_failure(self) -> None:
        strategy = build_strategy(PRECOMPUTED, _one_viewer_graph(1))
        assert isinstance(strategy, PrecomputedIndexStrategy)
        strategy.load(cyclic_graph())
        with pytest.raises(RefreshFailed):
            strategy.refresh()
        strategy.load(_one_viewer_graph(2))
        assert strategy.refresh().number == 2
        assert strategy.check(2, 10, VIEW)

    def test_refresh_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        strategy = build_strategy(PRECOMPUTED, _one_viewer_graph(1))
        assert isinstance(strategy, PrecomputedIndexStrategy)
        strategy.load(cyclic_graph())
        with pytest.raises(RefreshFailed):
            strategy.refresh()
        assert any("build failed" in r.getMessage() for r in caplog.records)


@pytest.mark.auto
@pytest.mark.rebac
class TestGeneration:
    def test_rows_are_flattened_and_sorted(self) -> None:
        generation = build_generation(GraphIndex.build(_one_viewer_graph(1)), 1)
        assert list(generation.rows()) == [(1, 10, "viewer")]
        assert generation.row_count == 1

    def test_manager_rows_imply_viewer_rows(self) -> None:
        generation = build_generation(GraphIndex.build(mixed_graph()), 1)
        rows = set(generation.rows())
        for user_id, resource_id, relation in rows:
            if relation == "manager":
                assert (user_id, resource_id, "viewer") in rows

    def test_unknown_user_in_generation(self) -> None:
        generation = build_generation(GraphIndex.build(mixed_graph()), 1)
        with pytest.raises(UnknownEntity):
            generation.resources_for(999, VIEW)


@pytest.mark.quick
@pytest.mark.auto
class TestFactory:
    def test_unknown_strategy_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown strategy"):
            build_strategy("magic", mixed_graph())

    def test_cold_precomputed_is_empty(self) -> None:
        strategy = build_strategy(PRECOMPUTED, mixed_graph(), warm=False)
        assert isinstance(strategy, PrecomputedIndexStrategy)
        assert strategy.state == STATE_EMPTY

    def test_accepts_prebuilt_index(self) -> None:
        index = GraphIndex.build(mixed_graph())
        strategy = build_strategy(STREAMING, index)
        assert isinstance(strategy, StreamingStrategy)
        assert strategy.index is index


# ---------------------------------------------------------------------------
# Stress: equivalence on a synthetic graph, concurrent readers
# ---------------------------------------------------------------------------


@pytest.mark.auto
@pytest.mark.rebac
@pytest.mark.stress
class TestStrategyEquivalenceOnSyntheticGraph:
    def test_all_strategies_agree(self, stress_snapshot: GraphSnapshot) -> None:
        strategies = [
            build_strategy(name, stress_snapshot) for name in (RECURSIVE, PRECOMPUTED, STREAMING)
        ]
        users = sorted(u.user_id for u in stress_snapshot.user_rows)[:40]
        resources = sorted(r.resource_id for r in stress_snapshot.resource_rows)[:60]
        assert_same_answers(strategies, users, resources)


@pytest.mark.auto
@pytest.mark.rebac
@pytest.mark.stress
class TestConcurrentReaders:
    def test_readers_never_see_a_torn_generation(self, settings: TestSettings) -> None:
        """Readers run while generations alternate between two graphs.

        Graph A: user 1 views resources 10 and 11. Graph B: user 2 does.
        Any single list call must return one of the two complete answers.
        """
        graph_a = (
            GraphBuilder()
            .org(1)
            .users(1, 2)
            .resources(10, 11)
            .grant_user(10, 1, "viewer")
            .grant_user(11, 1, "viewer")
            .build()
        )
        graph_b = (
            GraphBuilder()
            .org(1)
            .users(1, 2)
            .resources(10, 11)
            .grant_user(10, 2, "viewer")
            .grant_user(11, 2, "viewer")
            .build()
        )
        strategy = PrecomputedIndexStrategy(graph_a)
        strategy.refresh()

        stop = threading.Event()
        valid = {frozenset(), frozenset({10, 11})}

        def reader() -> int:
            reads = 0
            while not stop.is_set():
                assert strategy.list_resources(1, VIEW) in valid
                reads += 1
            return reads

        with ThreadPoolExecutor(max_workers=settings.concurrent_readers) as pool:
            futures = [pool.submit(reader) for _ in range(settings.concurrent_readers)]
            try:
                for i in range(settings.refresh_rounds * 2):
                    strategy.load(graph_b if i % 2 == 0 else graph_a)
                    strategy.refresh()
            finally:
                stop.set()
            for future in futures:
                future.result()

        assert strategy.generation is not None
        assert strategy.generation.number == settings.refresh_rounds * 2 + 1

    def test_concurrent_refreshes_are_serialized(self, settings: TestSettings) -> None:
        strategy = PrecomputedIndexStrategy(mixed_graph())
        with ThreadPoolExecutor(max_workers=settings.concurrent_readers) as pool:
            numbers = list(pool.map(lambda _: strategy.refresh().number, range(8)))
        assert sorted(numbers) == list(range(1, 9))
