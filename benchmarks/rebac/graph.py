"""Graph store interface, in-memory snapshot, and the validated adjacency index.

``GraphStore`` is the read-only interface the core consumes. Any loader
(CSV files, the synthetic generator, a test builder) produces a
``GraphSnapshot``. ``GraphIndex.build`` turns a store into integer-keyed
adjacency maps and enforces referential integrity, so a bad edge fails
at compile/load time rather than at query time.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Protocol

from benchmarks.rebac.errors import InvalidGraph, UnknownEntity
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

EMPTY: frozenset[int] = frozenset()


class GraphStore(Protocol):
    """Read-only snapshot of the permission graph."""

    def organizations(self) -> Iterator[int]: ...

    def users(self) -> Iterator[User]: ...

    def groups(self) -> Iterator[Group]: ...

    def group_hierarchy_edges(self) -> Iterator[GroupHierarchyEdge]: ...

    def group_membership_edges(self) -> Iterator[GroupMembershipEdge]: ...

    def org_membership_edges(self) -> Iterator[OrgMembershipEdge]: ...

    def resources(self) -> Iterator[Resource]: ...

    def resource_acl_edges(self) -> Iterator[ResourceAclEdge]: ...


@dataclass(frozen=True)
class GraphSnapshot:
    """Immutable in-memory ``GraphStore``."""

    org_ids: tuple[int, ...] = ()
    user_rows: tuple[User, ...] = ()
    group_rows: tuple[Group, ...] = ()
    hierarchy: tuple[GroupHierarchyEdge, ...] = ()
    group_memberships: tuple[GroupMembershipEdge, ...] = ()
    org_memberships: tuple[OrgMembershipEdge, ...] = ()
    resource_rows: tuple[Resource, ...] = ()
    acl: tuple[ResourceAclEdge, ...] = ()

    @classmethod
    def from_store(cls, store: GraphStore) -> GraphSnapshot:
        """Materialize any ``GraphStore`` into a snapshot."""
        return cls(
            org_ids=tuple(store.organizations()),
            user_rows=tuple(store.users()),
            group_rows=tuple(store.groups()),
            hierarchy=tuple(store.group_hierarchy_edges()),
            group_memberships=tuple(store.group_membership_edges()),
            org_memberships=tuple(store.org_membership_edges()),
            resource_rows=tuple(store.resources()),
            acl=tuple(store.resource_acl_edges()),
        )

    def organizations(self) -> Iterator[int]:
        return iter(self.org_ids)

    def users(self) -> Iterator[User]:
        return iter(self.user_rows)

    def groups(self) -> Iterator[Group]:
        return iter(self.group_rows)

    def group_hierarchy_edges(self) -> Iterator[GroupHierarchyEdge]:
        return iter(self.hierarchy)

    def group_membership_edges(self) -> Iterator[GroupMembershipEdge]:
        return iter(self.group_memberships)

    def org_membership_edges(self) -> Iterator[OrgMembershipEdge]:
        return iter(self.org_memberships)

    def resources(self) -> Iterator[Resource]:
        return iter(self.resource_rows)

    def resource_acl_edges(self) -> Iterator[ResourceAclEdge]:
        return iter(self.acl)


AclKey = tuple[str, str]  # (subject_type, relation)


@dataclass(frozen=True)
class GraphIndex:
    """Adjacency maps over a validated snapshot.

    Every set-valued map returns ``EMPTY`` for missing keys through the
    accessor methods; callers should not mutate the maps.
    """

    org_ids: frozenset[int]
    user_ids: frozenset[int]
    group_org: dict[int, int]
    resource_org: dict[int, int]
    children: dict[str, dict[int, tuple[int, ...]]]
    parents: dict[str, dict[int, tuple[int, ...]]]
    direct_members: dict[int, frozenset[int]]
    direct_managers: dict[int, frozenset[int]]
    member_groups_of_user: dict[int, frozenset[int]]
    manager_groups_of_user: dict[int, frozenset[int]]
    org_admins: dict[int, frozenset[int]]
    org_members: dict[int, frozenset[int]]
    admin_orgs_of_user: dict[int, frozenset[int]]
    member_orgs_of_user: dict[int, frozenset[int]]
    org_resources: dict[int, frozenset[int]]
    acl_subjects: dict[AclKey, dict[int, frozenset[int]]]
    acl_resources: dict[AclKey, dict[int, frozenset[int]]]
    referenced_groups: frozenset[int] = field(default=EMPTY)
    edge_count: int = 0

    # -- construction -------------------------------------------------------

    @classmethod
    def build(cls, graph: GraphStore) -> GraphIndex:
        """Index and validate a graph store.

        Raises:
            UnknownEntity: If any entity or edge references an id that the
                snapshot does not define.
            InvalidGraph: An edge has an unknown role or relation, or a
                group/resource id is defined in two orgs.
        """
        start = time.perf_counter()

        org_ids = frozenset(graph.organizations())
        user_ids = frozenset(u.user_id for u in graph.users())

        group_org: dict[int, int] = {}
        for group in graph.groups():
            _require(org_ids, "org", group.org_id, f"group {group.group_id}")
            _claim(group_org, "group", group.group_id, group.org_id)

        resource_org: dict[int, int] = {}
        org_resources: dict[int, set[int]] = defaultdict(set)
        for resource in graph.resources():
            _require(org_ids, "org", resource.org_id, f"resource {resource.resource_id}")
            _claim(resource_org, "resource", resource.resource_id, resource.org_id)
            org_resources[resource.org_id].add(resource.resource_id)

        edge_count = 0
        referenced: set[int] = set()

        children: dict[str, dict[int, list[int]]] = {
            MEMBER_GROUP: defaultdict(list),
            MANAGER_GROUP: defaultdict(list),
        }
        parents: dict[str, dict[int, list[int]]] = {
            MEMBER_GROUP: defaultdict(list),
            MANAGER_GROUP: defaultdict(list),
        }
        seen_hierarchy: set[GroupHierarchyEdge] = set()
        for edge in graph.group_hierarchy_edges():
            ctx = f"group_hierarchy {edge.parent_group_id}->{edge.child_group_id}"
            _require(group_org, "group", edge.parent_group_id, ctx)
            _require(group_org, "group", edge.child_group_id, ctx)
            if edge.relation not in children:
                raise InvalidGraph(f"Unknown hierarchy relation in {ctx}: {edge.relation!r}")
            edge_count += 1
            if edge in seen_hierarchy:
                continue
            seen_hierarchy.add(edge)
            children[edge.relation][edge.parent_group_id].append(edge.child_group_id)
            parents[edge.relation][edge.child_group_id].append(edge.parent_group_id)
            referenced.add(edge.parent_group_id)
            referenced.add(edge.child_group_id)

        direct_members: dict[int, set[int]] = defaultdict(set)
        direct_managers: dict[int, set[int]] = defaultdict(set)
        member_groups: dict[int, set[int]] = defaultdict(set)
        manager_groups: dict[int, set[int]] = defaultdict(set)
        for edge in graph.group_membership_edges():
            ctx = f"group_membership {edge.group_id}/{edge.user_id}"
            _require(group_org, "group", edge.group_id, ctx)
            _require(user_ids, "user", edge.user_id, ctx)
            if edge.role not in _GROUP_ROLES:
                raise InvalidGraph(f"Unknown group membership role in {ctx}: {edge.role!r}")
            edge_count += 1
            referenced.add(edge.group_id)
            if edge.role == MANAGER:
                direct_managers[edge.group_id].add(edge.user_id)
                manager_groups[edge.user_id].add(edge.group_id)
            else:
                direct_members[edge.group_id].add(edge.user_id)
                member_groups[edge.user_id].add(edge.group_id)

        org_admins: dict[int, set[int]] = defaultdict(set)
        org_members: dict[int, set[int]] = defaultdict(set)
        admin_orgs: dict[int, set[int]] = defaultdict(set)
        member_orgs: dict[int, set[int]] = defaultdict(set)
        for edge in graph.org_membership_edges():
            ctx = f"org_membership {edge.org_id}/{edge.user_id}"
            _require(org_ids, "org", edge.org_id, ctx)
            _require(user_ids, "user", edge.user_id, ctx)
            if edge.role not in _ORG_ROLES:
                raise InvalidGraph(f"Unknown org membership role in {ctx}: {edge.role!r}")
            edge_count += 1
            if edge.role == ADMIN:
                org_admins[edge.org_id].add(edge.user_id)
                admin_orgs[edge.user_id].add(edge.org_id)
            else:
                org_members[edge.org_id].add(edge.user_id)
                member_orgs[edge.user_id].add(edge.org_id)

        acl_subjects: dict[AclKey, dict[int, set[int]]] = {}
        acl_resources: dict[AclKey, dict[int, set[int]]] = {}
        for key in _ACL_KEYS:
            acl_subjects[key] = defaultdict(set)
            acl_resources[key] = defaultdict(set)
        for edge in graph.resource_acl_edges():
            ctx = f"resource_acl {edge.resource_id}/{edge.subject_type}:{edge.subject_id}"
            _require(resource_org, "resource", edge.resource_id, ctx)
            key = (edge.subject_type, edge.relation)
            if key not in acl_subjects:
                raise InvalidGraph(f"Unknown ACL relation in {ctx}: {edge.relation!r}")
            if edge.subject_type == SUBJECT_GROUP:
                _require(group_org, "group", edge.subject_id, ctx)
            else:
                _require(user_ids, "user", edge.subject_id, ctx)
            edge_count += 1
            acl_subjects[key][edge.resource_id].add(edge.subject_id)
            acl_resources[key][edge.subject_id].add(edge.resource_id)

        index = cls(
            org_ids=org_ids,
            user_ids=user_ids,
            group_org=group_org,
            resource_org=resource_org,
            children={rel: _freeze_lists(m) for rel, m in children.items()},
            parents={rel: _freeze_lists(m) for rel, m in parents.items()},
            direct_members=_freeze_sets(direct_members),
            direct_managers=_freeze_sets(direct_managers),
            member_groups_of_user=_freeze_sets(member_groups),
            manager_groups_of_user=_freeze_sets(manager_groups),
            org_admins=_freeze_sets(org_admins),
            org_members=_freeze_sets(org_members),
            admin_orgs_of_user=_freeze_sets(admin_orgs),
            member_orgs_of_user=_freeze_sets(member_orgs),
            org_resources=_freeze_sets(org_resources),
            acl_subjects={k: _freeze_sets(v) for k, v in acl_subjects.items()},
            acl_resources={k: _freeze_sets(v) for k, v in acl_resources.items()},
            referenced_groups=frozenset(referenced),
            edge_count=edge_count,
        )
        logger.info(
            "Indexed graph: %d orgs, %d users, %d groups, %d resources, %d edges in %.1fms",
            len(org_ids),
            len(user_ids),
            len(group_org),
            len(resource_org),
            edge_count,
            (time.perf_counter() - start) * 1000,
        )
        return index

    # -- accessors ----------------------------------------------------------

    def child_groups(self, group_id: int, relation: str) -> tuple[int, ...]:
        return self.children[relation].get(group_id, ())

    def parent_groups(self, group_id: int, relation: str) -> tuple[int, ...]:
        return self.parents[relation].get(group_id, ())

    def acl_subjects_of(
        self, resource_id: int, subject_type: str, relation: str
    ) -> frozenset[int]:
        """Subjects holding ``relation`` on a resource via direct ACL edges."""
        return self.acl_subjects[(subject_type, relation)].get(resource_id, EMPTY)

    def acl_resources_of(
        self, subject_type: str, subject_id: int, relation: str
    ) -> frozenset[int]:
        """Resources on which a subject holds ``relation`` via direct ACL edges."""
        return self.acl_resources[(subject_type, relation)].get(subject_id, EMPTY)

    def resource_org_of(self, resource_id: int) -> int:
        try:
            return self.resource_org[resource_id]
        except KeyError:
            raise UnknownEntity("resource", resource_id, "query") from None

    def require_user(self, user_id: int) -> None:
        if user_id not in self.user_ids:
            raise UnknownEntity("user", user_id, "query")

    def is_org_admin(self, org_id: int, user_id: int) -> bool:
        return user_id in self.org_admins.get(org_id, EMPTY)

    def is_org_member(self, org_id: int, user_id: int) -> bool:
        """True for any org role; admins are members too."""
        return (
            user_id in self.org_members.get(org_id, EMPTY)
            or user_id in self.org_admins.get(org_id, EMPTY)
        )

    @property
    def all_groups(self) -> Iterable[int]:
        return self.group_org.keys()


_GROUP_ROLES = frozenset({MEMBER, MANAGER})
_ORG_ROLES = frozenset({MEMBER, ADMIN})

_ACL_KEYS: tuple[AclKey, ...] = (
    (SUBJECT_USER, MANAGER),
    (SUBJECT_USER, VIEWER),
    (SUBJECT_GROUP, MANAGER),
    (SUBJECT_GROUP, VIEWER),
)


def _require(known: Iterable[int] | dict[int, int], kind: str, entity_id: int, context: str) -> None:
    if entity_id not in known:
        raise UnknownEntity(kind, entity_id, context)


def _claim(owner: dict[int, int], kind: str, entity_id: int, org_id: int) -> None:
    """Record ``entity_id -> org_id``; a repeat must name the same org."""
    existing = owner.setdefault(entity_id, org_id)
    if existing != org_id:
        raise InvalidGraph(
            f"{kind} {entity_id} defined in org {existing} and org {org_id}"
        )


def _freeze_sets(mapping: dict[int, set[int]]) -> dict[int, frozenset[int]]:
    return {key: frozenset(values) for key, values in mapping.items()}


def _freeze_lists(mapping: dict[int, list[int]]) -> dict[int, tuple[int, ...]]:
    return {key: tuple(values) for key, values in mapping.items()}
