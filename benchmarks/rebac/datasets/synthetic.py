"""Deterministic synthetic permission graphs.

Produces a heterogeneous org/user/group/resource graph suited to
Zanzibar-style read benchmarks:

    - per-org sizes drawn from small (20%), normal (60%) and large (20%) buckets
    - users shared across orgs (``avg_orgs_per_user``), first N members are admins
    - random group memberships plus a few group managers per group
    - nested groups: hierarchy edges always point from an earlier group to a
      later one within an org, so the hierarchy is a DAG by construction
    - per-resource ACL fan-out to manager/viewer users and groups

All randomness comes from one ``random.Random`` seeded from the settings.

Usage:
    snapshot = SyntheticDataset(GeneratorSettings(num_orgs=4, random_seed=7)).load()
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass

from benchmarks.rebac.config import GeneratorSettings
from benchmarks.rebac.graph import GraphSnapshot
from benchmarks.rebac.models import (
    ADMIN,
    MANAGER,
    MANAGER_GROUP,
    MEMBER,
    MEMBER_GROUP,
    SUBJECT_GROUP,
    SUBJECT_USER,
    VIEWER,
    Group,
    GroupHierarchyEdge,
    GroupMembershipEdge,
    OrgMembershipEdge,
    Resource,
    ResourceAclEdge,
    User,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyntheticDataset:
    """``DatasetSource`` backed by the generator."""

    settings: GeneratorSettings

    @property
    def name(self) -> str:
        return "synthetic"

    def load(self) -> GraphSnapshot:
        return generate_graph(self.settings)


def resolve_seed(settings: GeneratorSettings) -> int:
    return settings.random_seed or time.time_ns()


def generate_graph(settings: GeneratorSettings) -> GraphSnapshot:
    """Generate a complete snapshot from explicit settings."""
    seed = resolve_seed(settings)
    rng = random.Random(seed)
    start = time.perf_counter()
    logger.info("Generating synthetic graph (seed=%d): %s", seed, settings.model_dump())

    org_ids = tuple(range(1, settings.num_orgs + 1))
    user_caps = {o: _org_user_cap(settings, rng) for o in org_ids}
    group_caps = {o: _org_group_cap(settings, rng) for o in org_ids}
    resource_caps = {o: _org_resource_cap(settings, rng) for o in org_ids}

    total_memberships = sum(user_caps.values())
    total_users = max(
        -(-total_memberships // settings.avg_orgs_per_user),  # ceil
        max(user_caps.values()),
        1,
    )
    users = tuple(
        User(user_id, (user_id - 1) % settings.num_orgs + 1)
        for user_id in range(1, total_users + 1)
    )

    # Org memberships
    org_memberships: list[OrgMembershipEdge] = []
    org_users: dict[int, list[int]] = {o: [] for o in org_ids}
    for org_id in org_ids:
        picked = rng.sample(range(1, total_users + 1), min(user_caps[org_id], total_users))
        admins = min(settings.admins_per_org, len(picked))
        for idx, user_id in enumerate(picked):
            role = ADMIN if idx < admins else MEMBER
            org_memberships.append(OrgMembershipEdge(org_id, user_id, role))
            org_users[org_id].append(user_id)

    # Every user belongs to at least one org
    placed = {m.user_id for m in org_memberships}
    for user in users:
        if user.user_id not in placed:
            org_memberships.append(OrgMembershipEdge(user.primary_org_id, user.user_id, MEMBER))
            org_users[user.primary_org_id].append(user.user_id)

    # Groups
    groups: list[Group] = []
    org_groups: dict[int, list[int]] = {o: [] for o in org_ids}
    next_group_id = 1
    for org_id in org_ids:
        for _ in range(group_caps[org_id]):
            groups.append(Group(next_group_id, org_id))
            org_groups[org_id].append(next_group_id)
            next_group_id += 1

    group_memberships = _group_memberships(settings, rng, org_users, org_groups)
    hierarchy = _group_hierarchy(settings, rng, org_groups)

    # Resources
    resources: list[Resource] = []
    org_resources: dict[int, list[int]] = {o: [] for o in org_ids}
    next_resource_id = 1
    for org_id in org_ids:
        for _ in range(resource_caps[org_id]):
            resources.append(Resource(next_resource_id, org_id))
            org_resources[org_id].append(next_resource_id)
            next_resource_id += 1

    acl = _resource_acl(settings, rng, org_users, org_groups, org_resources)

    snapshot = GraphSnapshot(
        org_ids=org_ids,
        user_rows=users,
        group_rows=tuple(groups),
        hierarchy=tuple(hierarchy),
        group_memberships=tuple(group_memberships),
        org_memberships=tuple(org_memberships),
        resource_rows=tuple(resources),
        acl=tuple(acl),
    )
    logger.info(
        "Synthetic graph DONE in %.1fms: %d orgs, %d users, %d org_memberships, "
        "%d groups, %d group_memberships, %d hierarchy edges, %d resources, %d acl entries",
        (time.perf_counter() - start) * 1000,
        len(org_ids),
        len(users),
        len(org_memberships),
        len(groups),
        len(group_memberships),
        len(hierarchy),
        len(resources),
        len(acl),
    )
    return snapshot


# ---------------------------------------------------------------------------
# Per-org sizes
# ---------------------------------------------------------------------------


def _rand_in_range(rng: random.Random, lo: int, hi: int) -> int:
    """Random int in [lo, hi] with lo >= 1 and hi >= lo."""
    lo = max(lo, 1)
    return rng.randint(lo, max(hi, lo))


def _bucketed(rng: random.Random, small: int, normal: tuple[int, int], large: tuple[int, int]) -> int:
    t = rng.random()
    if t < 0.2:
        return _rand_in_range(rng, 1, small)
    if t < 0.8:
        return _rand_in_range(rng, *normal)
    return _rand_in_range(rng, *large)


def _org_user_cap(settings: GeneratorSettings, rng: random.Random) -> int:
    base = settings.users_per_org
    normal_min = max(1, base // 2)
    return _bucketed(
        rng,
        min(50, base // 4 + 5),
        (normal_min, max(normal_min, int(base * 1.5))),
        (base, max(base, base * 3)),
    )


def _org_group_cap(settings: GeneratorSettings, rng: random.Random) -> int:
    base = settings.groups_per_org
    if base <= 0:
        return 0
    normal_min = max(1, base // 2)
    return _bucketed(
        rng,
        min(5, base),
        (normal_min, max(normal_min, base)),
        (base, base * 2),
    )


def _org_resource_cap(settings: GeneratorSettings, rng: random.Random) -> int:
    base = settings.resources_per_org
    if base <= 0:
        return 0
    normal_min = max(1, base // 2)
    return _bucketed(
        rng,
        min(50, base // 4 + 5),
        (normal_min, max(normal_min, base)),
        (base, base * 3),
    )


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


def _group_memberships(
    settings: GeneratorSettings,
    rng: random.Random,
    org_users: dict[int, list[int]],
    org_groups: dict[int, list[int]],
) -> list[GroupMembershipEdge]:
    edges: list[GroupMembershipEdge] = []
    for org_id, users in org_users.items():
        groups = org_groups[org_id]
        if not users or not groups:
            continue

        max_groups = min(len(groups), settings.groups_per_user * 2 + 1)
        if max_groups >= 1:
            for user_id in users:
                count = _rand_in_range(rng, 1, max_groups)
                for group_id in rng.sample(groups, count):
                    edges.append(GroupMembershipEdge(group_id, user_id, MEMBER))

        managers = min(settings.group_managers_per_group, len(users))
        if managers:
            for group_id in groups:
                for user_id in rng.sample(users, managers):
                    edges.append(GroupMembershipEdge(group_id, user_id, MANAGER))
    return edges


def _group_hierarchy(
    settings: GeneratorSettings,
    rng: random.Random,
    org_groups: dict[int, list[int]],
) -> list[GroupHierarchyEdge]:
    edges: list[GroupHierarchyEdge] = []
    for groups in org_groups.values():
        n = len(groups)
        if n < 2 or settings.nested_groups_per_org == 0:
            continue
        wanted = min(settings.nested_groups_per_org, n * (n - 1) // 2)
        pairs: set[tuple[int, int]] = set()
        while len(pairs) < wanted:
            i, j = sorted(rng.sample(range(n), 2))
            pairs.add((groups[i], groups[j]))
        for parent, child in sorted(pairs):
            relation = MANAGER_GROUP if rng.random() < settings.manager_group_ratio else MEMBER_GROUP
            edges.append(GroupHierarchyEdge(parent, child, relation))
    return edges


def _resource_acl(
    settings: GeneratorSettings,
    rng: random.Random,
    org_users: dict[int, list[int]],
    org_groups: dict[int, list[int]],
    org_resources: dict[int, list[int]],
) -> list[ResourceAclEdge]:
    edges: list[ResourceAclEdge] = []
    for org_id, resources in org_resources.items():
        users = org_users[org_id]
        groups = org_groups[org_id]
        if not resources or not users:
            continue

        for resource_id in resources:
            seen: set[tuple[str, int, str]] = set()

            def add(subject_type: str, subject_id: int, relation: str) -> None:
                key = (subject_type, subject_id, relation)
                if key not in seen:
                    seen.add(key)
                    edges.append(ResourceAclEdge(resource_id, subject_type, subject_id, relation))

            manager_users = _rand_in_range(
                rng, 1, min(max(1, settings.manager_users_per_resource * 2 + 1), len(users))
            )
            viewer_users = _rand_in_range(
                rng, 1, min(max(1, settings.viewer_users_per_resource * 2), len(users))
            )
            manager_groups = 0
            if groups and settings.manager_groups_per_resource > 0:
                manager_groups = _rand_in_range(
                    rng, 1, min(max(1, settings.manager_groups_per_resource * 2), len(groups))
                )
            viewer_groups = 0
            if groups and settings.viewer_groups_per_resource > 0:
                viewer_groups = _rand_in_range(
                    rng, 1, min(max(1, settings.viewer_groups_per_resource * 2), len(groups))
                )

            for _ in range(manager_users):
                add(SUBJECT_USER, rng.choice(users), MANAGER)
            for _ in range(manager_groups):
                add(SUBJECT_GROUP, rng.choice(groups), MANAGER)
            for _ in range(viewer_users):
                add(SUBJECT_USER, rng.choice(users), VIEWER)
            for _ in range(viewer_groups):
                add(SUBJECT_GROUP, rng.choice(groups), VIEWER)
    return edges
