"""Point checks and enumeration over the two-tier manage/view lattice.

    manage(u, r) = u is a direct manager ACL subject on r
                 ∨ u ∈ effective_managers(g) for a group g with a manager ACL on r
                 ∨ u is an admin of r's org

    view(u, r)   = manage(u, r)
                 ∨ u is a direct viewer ACL subject on r
                 ∨ u ∈ effective_members(g) for a group g with a viewer ACL on r
                 ∨ u holds any role in r's org

The resolver is shared by every materialization strategy: the strategy only
decides which ``GroupClosure`` answers the nested-group questions.
"""

from __future__ import annotations

from benchmarks.rebac.closure import ClosureCompiler, ClosureTable, GroupClosure
from benchmarks.rebac.graph import EMPTY, GraphIndex, GraphStore
from benchmarks.rebac.models import (
    MANAGE,
    MANAGER,
    SUBJECT_GROUP,
    SUBJECT_USER,
    VIEWER,
    validate_permission,
)


class PermissionResolver:
    """Answer ``check`` and ``list_resources`` against one graph snapshot."""

    def __init__(self, index: GraphIndex, closure: GroupClosure) -> None:
        self.index = index
        self.closure = closure

    @classmethod
    def compile(cls, graph: GraphStore | GraphIndex) -> PermissionResolver:
        """Validate ``graph`` and back the resolver with a fully compiled closure."""
        index = graph if isinstance(graph, GraphIndex) else GraphIndex.build(graph)
        return cls(index, ClosureCompiler(index).compile())

    # -- point check --------------------------------------------------------

    def check(self, user_id: int, resource_id: int, permission: str) -> bool:
        permission = validate_permission(permission)
        org_id = self.index.resource_org_of(resource_id)
        self.index.require_user(user_id)

        if self._can_manage(user_id, resource_id, org_id):
            return True
        if permission == MANAGE:
            return False
        return self._can_view_beyond_manage(user_id, resource_id, org_id)

    def _can_manage(self, user_id: int, resource_id: int, org_id: int) -> bool:
        index = self.index
        if user_id in index.acl_subjects_of(resource_id, SUBJECT_USER, MANAGER):
            return True
        if index.is_org_admin(org_id, user_id):
            return True
        return any(
            self.closure.is_manager(group_id, user_id)
            for group_id in index.acl_subjects_of(resource_id, SUBJECT_GROUP, MANAGER)
        )

    def _can_view_beyond_manage(self, user_id: int, resource_id: int, org_id: int) -> bool:
        index = self.index
        if user_id in index.acl_subjects_of(resource_id, SUBJECT_USER, VIEWER):
            return True
        if index.is_org_member(org_id, user_id):
            return True
        return any(
            self.closure.is_member(group_id, user_id)
            for group_id in index.acl_subjects_of(resource_id, SUBJECT_GROUP, VIEWER)
        )

    # -- enumeration --------------------------------------------------------

    def list_resources(self, user_id: int, permission: str) -> frozenset[int]:
        """Every resource ``user_id`` holds ``permission`` on, deduplicated.

        Walks outward from the user (ACL edges keyed by subject, the user's
        effective groups, the user's orgs) instead of scanning all resources.
        """
        permission = validate_permission(permission)
        self.index.require_user(user_id)

        found = set(self._managed_resources(user_id))
        if permission == MANAGE:
            return frozenset(found)

        index = self.index
        found |= index.acl_resources_of(SUBJECT_USER, user_id, VIEWER)
        for group_id in self.closure.groups_with_member(user_id):
            found |= index.acl_resources_of(SUBJECT_GROUP, group_id, VIEWER)
        for org_id in index.member_orgs_of_user.get(user_id, EMPTY):
            found |= index.org_resources.get(org_id, EMPTY)
        return frozenset(found)

    def _managed_resources(self, user_id: int) -> set[int]:
        index = self.index
        found = set(index.acl_resources_of(SUBJECT_USER, user_id, MANAGER))
        for group_id in self.closure.groups_managed_by(user_id):
            found |= index.acl_resources_of(SUBJECT_GROUP, group_id, MANAGER)
        for org_id in index.admin_orgs_of_user.get(user_id, EMPTY):
            found |= index.org_resources.get(org_id, EMPTY)
        return found

    def list_sorted(self, user_id: int, permission: str) -> list[int]:
        """``list_resources`` in ascending id order, for reproducible output."""
        return sorted(self.list_resources(user_id, permission))

    # -- bulk ---------------------------------------------------------------

    def resource_grants(
        self, resource_id: int, closure: ClosureTable
    ) -> tuple[frozenset[int], frozenset[int]]:
        """All ``(managers, viewers)`` of one resource from a compiled closure.

        Viewers include managers. Used to flatten a precomputed index.
        """
        index = self.index
        org_id = index.resource_org_of(resource_id)

        manage = set(index.acl_subjects_of(resource_id, SUBJECT_USER, MANAGER))
        for group_id in index.acl_subjects_of(resource_id, SUBJECT_GROUP, MANAGER):
            manage |= closure.effective_managers(group_id)
        manage |= index.org_admins.get(org_id, EMPTY)

        view = set(manage)
        view |= index.acl_subjects_of(resource_id, SUBJECT_USER, VIEWER)
        for group_id in index.acl_subjects_of(resource_id, SUBJECT_GROUP, VIEWER):
            view |= closure.effective_members(group_id)
        view |= index.org_members.get(org_id, EMPTY)
        return frozenset(manage), frozenset(view)
