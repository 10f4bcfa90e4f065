"""Permission resolution tests, run against every materialization strategy.

Covers the manage/view lattice, org admin shortcut, nested-group ACLs,
enumeration dedup and fail-closed handling of unknown ids.

Groups: quick, auto, rebac
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from benchmarks.rebac.closure import compile_closure
from benchmarks.rebac.errors import CyclicHierarchy, RefreshFailed, UnknownEntity
from benchmarks.rebac.graph import GraphIndex, GraphSnapshot
from benchmarks.rebac.models import MANAGE, VIEW
from benchmarks.rebac.resolver import PermissionResolver
from benchmarks.rebac.strategies import PRECOMPUTED, MaterializationStrategy, build_strategy
from tests.helpers.assertions import assert_lattice, assert_list_matches_check
from tests.helpers.graph_builder import (
    R1,
    R2,
    USER_7,
    USER_9,
    GraphBuilder,
    conflicting_paths_graph,
    cyclic_graph,
    nested_groups_graph,
)

MakeStrategy = Callable[[GraphSnapshot], MaterializationStrategy]

# Expected answers for tests.helpers.graph_builder.mixed_graph
MIXED_MANAGE = {
    1: [100, 101, 102, 103],
    2: [100],
    3: [],
    4: [],
    5: [],
    6: [102],
    7: [],
    8: [],
}
MIXED_VIEW = {
    1: [100, 101, 102, 103],
    2: [100, 101],
    3: [101],
    4: [101],
    5: [100, 101, 102, 103],
    6: [102, 103],
    7: [200],
    8: [100, 101, 102, 103, 200],
}
MIXED_RESOURCES = [100, 101, 102, 103, 200]


# ---------------------------------------------------------------------------
# Documented scenarios
# ---------------------------------------------------------------------------


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestNestedGroupScenario:
    """groupX --member_group--> groupY, user7 in groupY, viewer ACL on groupX."""

    def test_view_through_nested_group(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        assert strategy.check(USER_7, R1, VIEW) is True

    def test_no_manage_through_viewer_acl(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        assert strategy.check(USER_7, R1, MANAGE) is False

    def test_enumeration(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        assert strategy.list_sorted(USER_7, VIEW) == [R1]
        assert strategy.list_sorted(USER_7, MANAGE) == []


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestConflictingPaths:
    """user9 reaches R2 through a direct viewer ACL and through org membership."""

    def test_resource_listed_once(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(conflicting_paths_graph())
        listed = strategy.list_sorted(USER_9, VIEW)
        assert listed == [R2]
        assert listed.count(R2) == 1

    def test_check_allows_view_only(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(conflicting_paths_graph())
        assert strategy.check(USER_9, R2, VIEW)
        assert not strategy.check(USER_9, R2, MANAGE)


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestOrgAdminShortcut:
    def test_admin_manages_every_org_resource_without_acl(
        self, make_strategy: MakeStrategy
    ) -> None:
        graph = (
            GraphBuilder()
            .org(1, 2)
            .users(1, 2)
            .org_admin(1, 1)
            .resources(10, 11, 12, org=1)
            .resource(20, org=2)
            .build()
        )
        strategy = make_strategy(graph)
        for resource_id in (10, 11, 12):
            assert strategy.check(1, resource_id, MANAGE)
            assert strategy.check(1, resource_id, VIEW)
        assert not strategy.check(1, 20, VIEW)
        assert strategy.list_sorted(1, MANAGE) == [10, 11, 12]
        assert strategy.list_sorted(2, VIEW) == []

    def test_org_member_views_but_does_not_manage(self, make_strategy: MakeStrategy) -> None:
        graph = GraphBuilder().org(1).users(1).org_member(1, 1).resource(10).build()
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, VIEW)
        assert not strategy.check(1, 10, MANAGE)

    def test_admin_and_member_rows_for_same_user(self, make_strategy: MakeStrategy) -> None:
        graph = (
            GraphBuilder()
            .org(1)
            .users(1)
            .org_member(1, 1)
            .org_admin(1, 1)
            .resource(10)
            .build()
        )
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, MANAGE)
        assert strategy.list_sorted(1, VIEW) == [10]

    def test_primary_org_grants_nothing(self, make_strategy: MakeStrategy) -> None:
        graph = GraphBuilder().org(1).users(1, org=1).resource(10, org=1).build()
        strategy = make_strategy(graph)
        assert not strategy.check(1, 10, VIEW)


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestSparseOrgs:
    """Orgs missing admins, members or resources resolve to empty sets, not errors."""

    def test_org_without_admins(self, make_strategy: MakeStrategy) -> None:
        graph = (
            GraphBuilder()
            .org(1)
            .users(1, 2)
            .org_member(1, 2)
            .resource(10)
            .grant_user(10, 1, "viewer")
            .build()
        )
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, VIEW)
        assert not strategy.check(1, 10, MANAGE)
        assert strategy.list_sorted(1, VIEW) == [10]
        assert strategy.list_sorted(1, MANAGE) == []
        assert strategy.list_sorted(2, VIEW) == [10]

    def test_org_with_only_admins(self, make_strategy: MakeStrategy) -> None:
        graph = GraphBuilder().org(1).users(1).org_admin(1, 1).resource(10).build()
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, MANAGE)
        assert strategy.check(1, 10, VIEW)
        assert strategy.list_sorted(1, MANAGE) == [10]
        assert strategy.list_sorted(1, VIEW) == [10]

    def test_user_whose_org_has_no_resources(self, make_strategy: MakeStrategy) -> None:
        graph = (
            GraphBuilder()
            .org(1, 2)
            .users(1, 2, org=2)
            .org_member(2, 1)
            .org_admin(2, 2)
            .resource(10, org=1)
            .grant_user(10, 1, "viewer")
            .build()
        )
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, VIEW)
        assert not strategy.check(2, 10, VIEW)
        assert strategy.list_sorted(1, VIEW) == [10]
        assert strategy.list_sorted(1, MANAGE) == []
        assert strategy.list_sorted(2, MANAGE) == []
        assert strategy.list_sorted(2, VIEW) == []


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestAclPaths:
    def test_direct_manager_acl(self, make_strategy: MakeStrategy) -> None:
        graph = GraphBuilder().org(1).users(1).resource(10).grant_user(10, 1, "manager").build()
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, MANAGE)
        assert strategy.check(1, 10, VIEW)

    def test_group_manager_acl_needs_group_manager(self, make_strategy: MakeStrategy) -> None:
        graph = (
            GraphBuilder()
            .org(1)
            .users(1, 2)
            .group(5)
            .manager(5, 1)
            .member(5, 2)
            .resource(10)
            .grant_group(10, 5, "manager")
            .build()
        )
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, MANAGE)
        assert not strategy.check(2, 10, MANAGE)
        # A plain member of a manager-ACL'd group gets nothing.
        assert not strategy.check(2, 10, VIEW)

    def test_group_viewer_acl_includes_group_managers(self, make_strategy: MakeStrategy) -> None:
        graph = (
            GraphBuilder()
            .org(1)
            .users(1)
            .group(5)
            .manager(5, 1)
            .resource(10)
            .grant_group(10, 5, "viewer")
            .build()
        )
        strategy = make_strategy(graph)
        assert strategy.check(1, 10, VIEW)
        assert not strategy.check(1, 10, MANAGE)

    def test_mixed_graph_enumeration(self, make_strategy: MakeStrategy, mixed_snapshot: GraphSnapshot) -> None:
        strategy = make_strategy(mixed_snapshot)
        for user_id, expected in MIXED_MANAGE.items():
            assert strategy.list_sorted(user_id, MANAGE) == expected, user_id
        for user_id, expected in MIXED_VIEW.items():
            assert strategy.list_sorted(user_id, VIEW) == expected, user_id

    def test_mixed_graph_lattice(self, make_strategy: MakeStrategy, mixed_snapshot: GraphSnapshot) -> None:
        strategy = make_strategy(mixed_snapshot)
        assert_lattice(strategy, MIXED_VIEW, MIXED_RESOURCES)
        assert_list_matches_check(strategy, MIXED_VIEW, MIXED_RESOURCES)


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestFailClosed:
    def test_unknown_permission(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        with pytest.raises(ValueError, match="Unknown permission"):
            strategy.check(USER_7, R1, "edit")
        with pytest.raises(ValueError, match="Unknown permission"):
            strategy.list_resources(USER_7, "owner")

    def test_unknown_resource(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        with pytest.raises(UnknownEntity) as exc_info:
            strategy.check(USER_7, 9999, VIEW)
        assert exc_info.value.kind == "resource"

    def test_unknown_user(self, make_strategy: MakeStrategy) -> None:
        strategy = make_strategy(nested_groups_graph())
        with pytest.raises(UnknownEntity) as exc_info:
            strategy.check(4242, R1, VIEW)
        assert exc_info.value.kind == "user"
        with pytest.raises(UnknownEntity):
            strategy.list_resources(4242, MANAGE)

    def test_known_user_without_grants_gets_empty_list(
        self, make_strategy: MakeStrategy
    ) -> None:
        graph = GraphBuilder().org(1).users(1, 2).resource(10).grant_user(10, 1, "viewer").build()
        strategy = make_strategy(graph)
        assert strategy.list_resources(2, VIEW) == frozenset()


@pytest.mark.quick
@pytest.mark.auto
@pytest.mark.rebac
class TestCycleRejectedByEveryStrategy:
    def test_cycle_fails_at_load(self, strategy_name: str) -> None:
        if strategy_name == PRECOMPUTED:
            with pytest.raises(RefreshFailed) as exc_info:
                build_strategy(strategy_name, cyclic_graph())
            assert isinstance(exc_info.value.__cause__, CyclicHierarchy)
            assert exc_info.value.kept_generation is None
        else:
            with pytest.raises(CyclicHierarchy):
                build_strategy(strategy_name, cyclic_graph())


@pytest.mark.auto
@pytest.mark.rebac
class TestResolverDirect:
    """The shared resolver backed by a compiled closure table."""

    def test_compile_and_check(self, mixed_snapshot: GraphSnapshot) -> None:
        resolver = PermissionResolver.compile(mixed_snapshot)
        assert resolver.check(2, 100, MANAGE)
        assert resolver.check(3, 101, VIEW)
        assert not resolver.check(3, 100, VIEW)

    def test_resource_grants_viewers_include_managers(self, mixed_snapshot: GraphSnapshot) -> None:
        index = GraphIndex.build(mixed_snapshot)
        table = compile_closure(index)
        resolver = PermissionResolver(index, table)
        for resource_id in MIXED_RESOURCES:
            managers, viewers = resolver.resource_grants(resource_id, table)
            assert managers <= viewers
        assert resolver.resource_grants(100, table) == (
            frozenset({1, 2}),
            frozenset({1, 2, 5, 8}),
        )
