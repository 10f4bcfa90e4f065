"""Interchangeable ways of materializing the permission resolver.

    recursive    closure expanded per query (only the touched groups for a
                 check, the full closure for an enumeration); always current
    precomputed  closure flattened into (user, resource, relation) rows once
                 per refresh; stale until the next refresh
    streaming    no closure at all; each query walks hierarchy edges on
                 demand; always current, no storage

Recursive and streaming answer against the latest loaded graph. The
precomputed index serves its last good generation until ``refresh``
succeeds; a refresh builds the next generation off to the side and swaps a
single reference, so concurrent readers see either the old or the new
generation in full.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

from benchmarks.rebac.closure import ClosureCompiler, ensure_acyclic
from benchmarks.rebac.errors import IndexNotReady, RefreshFailed, UnknownEntity
from benchmarks.rebac.graph import EMPTY, GraphIndex, GraphStore
from benchmarks.rebac.models import (
    MANAGE,
    MANAGER,
    MANAGER_GROUP,
    MEMBER_GROUP,
    VIEWER,
    validate_permission,
)
from benchmarks.rebac.resolver import PermissionResolver

logger = logging.getLogger(__name__)

RECURSIVE = "recursive"
PRECOMPUTED = "precomputed"
STREAMING = "streaming"
STRATEGY_NAMES = (RECURSIVE, PRECOMPUTED, STREAMING)


class MaterializationStrategy(Protocol):
    """Common surface of the three strategies."""

    name: str

    def load(self, graph: GraphStore | GraphIndex) -> None: ...

    def check(self, user_id: int, resource_id: int, permission: str) -> bool: ...

    def list_resources(self, user_id: int, permission: str) -> frozenset[int]: ...

    def list_sorted(self, user_id: int, permission: str) -> list[int]: ...


def _as_index(graph: GraphStore | GraphIndex) -> GraphIndex:
    return graph if isinstance(graph, GraphIndex) else GraphIndex.build(graph)


class _LiveGraphStrategy:
    """Base for strategies that always answer against the latest graph."""

    name = ""

    def __init__(self, graph: GraphStore | GraphIndex) -> None:
        self._index: GraphIndex
        self.load(graph)

    def load(self, graph: GraphStore | GraphIndex) -> None:
        index = _as_index(graph)
        ensure_acyclic(index)
        self._index = index

    @property
    def index(self) -> GraphIndex:
        return self._index

    def list_sorted(self, user_id: int, permission: str) -> list[int]:
        return sorted(self.list_resources(user_id, permission))


# ---------------------------------------------------------------------------
# Recursive
# ---------------------------------------------------------------------------


class RecursiveStrategy(_LiveGraphStrategy):
    """Recompute the closure on every query; nothing is kept between calls."""

    name = RECURSIVE

    def check(self, user_id: int, resource_id: int, permission: str) -> bool:
        index = self._index
        # Lazy compiler: only groups on this resource's ACL get expanded.
        return PermissionResolver(index, ClosureCompiler(index)).check(
            user_id, resource_id, permission
        )

    def list_resources(self, user_id: int, permission: str) -> frozenset[int]:
        index = self._index
        closure = ClosureCompiler(index).compile()
        return PermissionResolver(index, closure).list_resources(user_id, permission)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class StreamingClosure:
    """``GroupClosure`` answered by walking hierarchy edges per call.

    Membership questions walk downward from the asked group and stop at the
    first hit. Enumeration questions walk upward from the groups the user
    belongs to directly.
    """

    def __init__(self, index: GraphIndex) -> None:
        self._index = index

    def is_manager(self, group_id: int, user_id: int) -> bool:
        holders = self._index.manager_groups_of_user.get(user_id, EMPTY)
        if not holders:
            return False
        return self._reaches([group_id], MANAGER_GROUP, holders)

    def is_member(self, group_id: int, user_id: int) -> bool:
        index = self._index
        member_holders = index.member_groups_of_user.get(user_id, EMPTY)
        manager_holders = index.manager_groups_of_user.get(user_id, EMPTY)
        if not member_holders and not manager_holders:
            return False

        member_nodes: list[int] = []
        if self._reaches([group_id], MEMBER_GROUP, member_holders, member_nodes):
            return True
        # Managers of any group in the member subtree are members too.
        return bool(manager_holders) and self._reaches(
            member_nodes, MANAGER_GROUP, manager_holders
        )

    def groups_managed_by(self, user_id: int) -> frozenset[int]:
        start = self._index.manager_groups_of_user.get(user_id, EMPTY)
        return self._ancestors(start, MANAGER_GROUP)

    def groups_with_member(self, user_id: int) -> frozenset[int]:
        start = self._index.member_groups_of_user.get(user_id, EMPTY)
        return self._ancestors(start | self.groups_managed_by(user_id), MEMBER_GROUP)

    def _reaches(
        self,
        roots: list[int],
        relation: str,
        holders: frozenset[int],
        visited_out: list[int] | None = None,
    ) -> bool:
        seen = set(roots)
        stack = list(roots)
        while stack:
            group_id = stack.pop()
            if visited_out is not None:
                visited_out.append(group_id)
            if group_id in holders:
                return True
            for child in self._index.child_groups(group_id, relation):
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return False

    def _ancestors(self, start: frozenset[int], relation: str) -> frozenset[int]:
        seen = set(start)
        stack = list(start)
        while stack:
            group_id = stack.pop()
            for parent in self._index.parent_groups(group_id, relation):
                if parent not in seen:
                    seen.add(parent)
                    stack.append(parent)
        return frozenset(seen)


class StreamingStrategy(_LiveGraphStrategy):
    """Walk the graph on demand for every query; no derived state."""

    name = STREAMING

    def check(self, user_id: int, resource_id: int, permission: str) -> bool:
        index = self._index
        return PermissionResolver(index, StreamingClosure(index)).check(
            user_id, resource_id, permission
        )

    def list_resources(self, user_id: int, permission: str) -> frozenset[int]:
        index = self._index
        return PermissionResolver(index, StreamingClosure(index)).list_resources(
            user_id, permission
        )


# ---------------------------------------------------------------------------
# Precomputed index
# ---------------------------------------------------------------------------

STATE_EMPTY = "empty"
STATE_BUILDING = "building"
STATE_READY = "ready"
STATE_REFRESHING = "refreshing"


@dataclass(frozen=True)
class Generation:
    """One complete, immutable build of the precomputed permission index."""

    number: int
    built_at: float
    build_ms: float
    user_ids: frozenset[int]
    resource_ids: frozenset[int]
    manage: dict[int, frozenset[int]]  # user_id -> resource ids
    view: dict[int, frozenset[int]]  # user_id -> resource ids, manage included

    def rows(self) -> Iterator[tuple[int, int, str]]:
        """Flattened ``(user_id, resource_id, relation)`` rows, sorted."""
        for relation, table in ((MANAGER, self.manage), (VIEWER, self.view)):
            for user_id in sorted(table):
                for resource_id in sorted(table[user_id]):
                    yield user_id, resource_id, relation

    @property
    def row_count(self) -> int:
        return sum(len(s) for s in self.manage.values()) + sum(
            len(s) for s in self.view.values()
        )

    def resources_for(self, user_id: int, permission: str) -> frozenset[int]:
        if user_id not in self.user_ids:
            raise UnknownEntity("user", user_id, "query")
        table = self.manage if permission == MANAGE else self.view
        return table.get(user_id, EMPTY)


GenerationBuilder = Callable[[GraphIndex, int], Generation]


def build_generation(index: GraphIndex, number: int) -> Generation:
    """Compile the closure and flatten every resource's grants by user."""
    start = time.perf_counter()
    closure = ClosureCompiler(index).compile()
    resolver = PermissionResolver(index, closure)

    manage: dict[int, set[int]] = defaultdict(set)
    view: dict[int, set[int]] = defaultdict(set)
    for resource_id in sorted(index.resource_org):
        managers, viewers = resolver.resource_grants(resource_id, closure)
        for user_id in managers:
            manage[user_id].add(resource_id)
        for user_id in viewers:
            view[user_id].add(resource_id)

    return Generation(
        number=number,
        built_at=time.time(),
        build_ms=(time.perf_counter() - start) * 1000,
        user_ids=index.user_ids,
        resource_ids=frozenset(index.resource_org),
        manage={u: frozenset(r) for u, r in manage.items()},
        view={u: frozenset(r) for u, r in view.items()},
    )


class PrecomputedIndexStrategy:
    """Serve queries from a flattened index rebuilt by explicit ``refresh``.

    States: empty -> building -> ready -> refreshing -> ready -> ...
    A failed build leaves the previous generation serving.
    """

    name = PRECOMPUTED

    def __init__(
        self,
        graph: GraphStore | GraphIndex,
        *,
        builder: GenerationBuilder = build_generation,
    ) -> None:
        self._builder = builder
        self._refresh_lock = threading.Lock()
        self._generation: Generation | None = None
        self._state = STATE_EMPTY
        self._index = _as_index(graph)

    def load(self, graph: GraphStore | GraphIndex) -> None:
        """Stage a new graph snapshot; it is served after the next ``refresh``."""
        self._index = _as_index(graph)

    @property
    def state(self) -> str:
        return self._state

    @property
    def generation(self) -> Generation | None:
        return self._generation

    def refresh(self) -> Generation:
        """Build a new generation from the staged graph and swap it in.

        Raises:
            RefreshFailed: The build errored; the prior generation (if any)
                keeps serving. The original error is chained as ``__cause__``.
        """
        with self._refresh_lock:
            index = self._index
            previous = self._generation
            number = previous.number + 1 if previous else 1
            self._state = STATE_REFRESHING if previous else STATE_BUILDING
            logger.info("%s: building generation %d", self.name, number)

            try:
                generation = self._builder(index, number)
            except Exception as exc:
                self._state = STATE_READY if previous else STATE_EMPTY
                kept = previous.number if previous else None
                logger.exception(
                    "%s: generation %d build failed; serving generation %s",
                    self.name,
                    number,
                    kept,
                )
                raise RefreshFailed(self.name, kept) from exc

            self._generation = generation
            self._state = STATE_READY
            logger.info(
                "%s: generation %d ready (%d rows, %.1fms)",
                self.name,
                number,
                generation.row_count,
                generation.build_ms,
            )
            return generation

    def _current(self) -> Generation:
        generation = self._generation
        if generation is None:
            raise IndexNotReady(f"{self.name} index has no completed generation")
        return generation

    def check(self, user_id: int, resource_id: int, permission: str) -> bool:
        permission = validate_permission(permission)
        generation = self._current()
        if resource_id not in generation.resource_ids:
            raise UnknownEntity("resource", resource_id, "query")
        return resource_id in generation.resources_for(user_id, permission)

    def list_resources(self, user_id: int, permission: str) -> frozenset[int]:
        permission = validate_permission(permission)
        return self._current().resources_for(user_id, permission)

    def list_sorted(self, user_id: int, permission: str) -> list[int]:
        return sorted(self.list_resources(user_id, permission))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_strategy(
    name: str, graph: GraphStore | GraphIndex, *, warm: bool = True
) -> MaterializationStrategy:
    """Construct a strategy by name.

    With ``warm`` the precomputed index is refreshed once so it starts ready.
    """
    if name == RECURSIVE:
        return RecursiveStrategy(graph)
    if name == STREAMING:
        return StreamingStrategy(graph)
    if name == PRECOMPUTED:
        strategy = PrecomputedIndexStrategy(graph)
        if warm:
            strategy.refresh()
        return strategy
    raise ValueError(f"Unknown strategy: {name}")
