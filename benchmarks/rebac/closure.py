"""Transitive closure of nested groups.

For every group the compiler derives two user sets:

    effective_managers(g) = direct managers of g
                            ∪ effective_managers(c) for each manager_group child c
    effective_members(g)  = direct members of g
                            ∪ effective_managers(g)        (managers are members)
                            ∪ effective_members(c) for each member_group child c

Expansion is a memoized depth-first walk. It is iterative, so deep
hierarchies do not depend on the interpreter recursion limit, and it keeps
the current DFS path so a cycle raises ``CyclicHierarchy`` instead of
looping.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from benchmarks.rebac.errors import CyclicHierarchy
from benchmarks.rebac.graph import EMPTY, GraphIndex, GraphStore
from benchmarks.rebac.models import HIERARCHY_RELATIONS, MANAGER_GROUP, MEMBER_GROUP

logger = logging.getLogger(__name__)


class GroupClosure(Protocol):
    """Membership view over nested groups consumed by the resolver."""

    def is_manager(self, group_id: int, user_id: int) -> bool: ...

    def is_member(self, group_id: int, user_id: int) -> bool: ...

    def groups_managed_by(self, user_id: int) -> frozenset[int]: ...

    def groups_with_member(self, user_id: int) -> frozenset[int]: ...


@dataclass(frozen=True)
class ClosureStats:
    groups: int
    manager_entries: int
    member_entries: int


@dataclass(frozen=True)
class ClosureTable:
    """Fully expanded closure for every referenced group, with reverse indexes."""

    managers: dict[int, frozenset[int]]
    members: dict[int, frozenset[int]]
    managed_by: dict[int, frozenset[int]]
    member_of: dict[int, frozenset[int]]

    def effective_managers(self, group_id: int) -> frozenset[int]:
        return self.managers.get(group_id, EMPTY)

    def effective_members(self, group_id: int) -> frozenset[int]:
        return self.members.get(group_id, EMPTY)

    def is_manager(self, group_id: int, user_id: int) -> bool:
        return user_id in self.managers.get(group_id, EMPTY)

    def is_member(self, group_id: int, user_id: int) -> bool:
        return user_id in self.members.get(group_id, EMPTY)

    def groups_managed_by(self, user_id: int) -> frozenset[int]:
        return self.managed_by.get(user_id, EMPTY)

    def groups_with_member(self, user_id: int) -> frozenset[int]:
        return self.member_of.get(user_id, EMPTY)

    def stats(self) -> ClosureStats:
        return ClosureStats(
            groups=len(self.members),
            manager_entries=sum(len(s) for s in self.managers.values()),
            member_entries=sum(len(s) for s in self.members.values()),
        )


class ClosureCompiler:
    """Memoized closure expansion over one ``GraphIndex``.

    Groups can be expanded lazily one at a time (``effective_managers`` /
    ``effective_members``) or all at once with ``compile``. A compiler is
    tied to a single index; build a new one after the graph changes.
    """

    def __init__(self, index: GraphIndex) -> None:
        self._index = index
        self._managers: dict[int, frozenset[int]] = {}
        self._members: dict[int, frozenset[int]] = {}
        self._table: ClosureTable | None = None

    def effective_managers(self, group_id: int) -> frozenset[int]:
        return _expand(
            self._index, group_id, MANAGER_GROUP, self._managers, self._manager_seed
        )

    def effective_members(self, group_id: int) -> frozenset[int]:
        return _expand(
            self._index, group_id, MEMBER_GROUP, self._members, self._member_seed
        )

    def _manager_seed(self, group_id: int) -> frozenset[int]:
        return self._index.direct_managers.get(group_id, EMPTY)

    def _member_seed(self, group_id: int) -> frozenset[int]:
        direct = self._index.direct_members.get(group_id, EMPTY)
        return direct | self.effective_managers(group_id)

    # GroupClosure ------------------------------------------------------------

    def is_manager(self, group_id: int, user_id: int) -> bool:
        return user_id in self.effective_managers(group_id)

    def is_member(self, group_id: int, user_id: int) -> bool:
        return user_id in self.effective_members(group_id)

    def groups_managed_by(self, user_id: int) -> frozenset[int]:
        return self.compile().groups_managed_by(user_id)

    def groups_with_member(self, user_id: int) -> frozenset[int]:
        return self.compile().groups_with_member(user_id)

    # -------------------------------------------------------------------------

    def compile(self) -> ClosureTable:
        """Expand every group referenced by hierarchy or membership edges."""
        if self._table is not None:
            return self._table

        for group_id in sorted(self._index.referenced_groups):
            self.effective_managers(group_id)
            self.effective_members(group_id)

        self._table = ClosureTable(
            managers=dict(self._managers),
            members=dict(self._members),
            managed_by=_invert(self._managers),
            member_of=_invert(self._members),
        )
        return self._table


def compile_closure(graph: GraphStore | GraphIndex) -> ClosureTable:
    """Validate a graph and compile the closure of every group.

    Raises:
        UnknownEntity: An edge references an id missing from the snapshot.
        CyclicHierarchy: The group hierarchy is not a DAG.
    """
    index = graph if isinstance(graph, GraphIndex) else GraphIndex.build(graph)
    start = time.perf_counter()
    table = ClosureCompiler(index).compile()
    stats = table.stats()
    logger.info(
        "Compiled closure: %d groups, %d manager entries, %d member entries in %.1fms",
        stats.groups,
        stats.manager_entries,
        stats.member_entries,
        (time.perf_counter() - start) * 1000,
    )
    return table


def ensure_acyclic(index: GraphIndex) -> None:
    """Raise ``CyclicHierarchy`` if either hierarchy relation has a cycle."""
    for relation in HIERARCHY_RELATIONS:
        seen: dict[int, frozenset[int]] = {}
        for group_id in sorted(index.referenced_groups):
            _expand(index, group_id, relation, seen, _no_users)


def _no_users(group_id: int) -> frozenset[int]:
    return EMPTY


def _expand(
    index: GraphIndex,
    root: int,
    relation: str,
    memo: dict[int, frozenset[int]],
    seed: Callable[[int], frozenset[int]],
) -> frozenset[int]:
    """Post-order DFS from ``root`` along ``relation`` edges, filling ``memo``."""
    if root in memo:
        return memo[root]

    # Insertion-ordered; holds exactly the current DFS path.
    on_path: dict[int, None] = {root: None}
    stack = [(root, iter(index.child_groups(root, relation)))]

    while stack:
        group_id, pending = stack[-1]
        for child in pending:
            if child in memo:
                continue
            if child in on_path:
                path = list(on_path)
                raise CyclicHierarchy(path[path.index(child):] + [child], relation)
            on_path[child] = None
            stack.append((child, iter(index.child_groups(child, relation))))
            break
        else:
            stack.pop()
            del on_path[group_id]
            users = seed(group_id)
            child_ids = index.child_groups(group_id, relation)
            if child_ids:
                merged = set(users)
                for child in child_ids:
                    merged |= memo[child]
                users = frozenset(merged)
            memo[group_id] = users

    return memo[root]


def _invert(closure: dict[int, frozenset[int]]) -> dict[int, frozenset[int]]:
    inverted: dict[int, set[int]] = defaultdict(set)
    for group_id, users in closure.items():
        for user_id in users:
            inverted[user_id].add(group_id)
    return {user_id: frozenset(groups) for user_id, groups in inverted.items()}
