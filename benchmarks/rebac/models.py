"""Immutable entity and edge records for the permission graph.

All identifiers are plain ints, unique within their entity type. Relation
and role vocabularies are kept as string constants; ingestion normalizes
the legacy spellings found in older datasets (see ``normalize_*``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

MEMBER_GROUP = "member_group"
MANAGER_GROUP = "manager_group"
HIERARCHY_RELATIONS = (MEMBER_GROUP, MANAGER_GROUP)

MEMBER = "member"
MANAGER = "manager"
ADMIN = "admin"

SUBJECT_USER = "user"
SUBJECT_GROUP = "group"

VIEWER = "viewer"

MANAGE = "manage"
VIEW = "view"
PERMISSIONS = (MANAGE, VIEW)

Permission = Literal["manage", "view"]

_GROUP_ROLE_ALIASES = {
    "member": MEMBER,
    "direct_member": MEMBER,
    "manager": MANAGER,
    "direct_manager": MANAGER,
    "admin": MANAGER,
}

_ACL_RELATION_ALIASES = {
    SUBJECT_USER: {
        "manager": MANAGER,
        "manager_user": MANAGER,
        "viewer": VIEWER,
        "viewer_user": VIEWER,
    },
    SUBJECT_GROUP: {
        "manager": MANAGER,
        "manager_group": MANAGER,
        "viewer": VIEWER,
        "viewer_group": VIEWER,
    },
}


def normalize_group_role(raw: str) -> str:
    """Map a raw group membership role onto ``member`` or ``manager``."""
    try:
        return _GROUP_ROLE_ALIASES[raw.strip()]
    except KeyError:
        raise ValueError(f"Unknown group membership role: {raw!r}") from None


def normalize_org_role(raw: str) -> str:
    role = raw.strip()
    if role not in (MEMBER, ADMIN):
        raise ValueError(f"Unknown org membership role: {raw!r}")
    return role


def normalize_hierarchy_relation(raw: str) -> str:
    relation = raw.strip()
    if relation not in HIERARCHY_RELATIONS:
        raise ValueError(f"Unknown group hierarchy relation: {raw!r}")
    return relation


def normalize_acl_relation(subject_type: str, raw: str) -> str:
    """Map a raw ACL relation onto ``manager`` or ``viewer`` for a subject type."""
    aliases = _ACL_RELATION_ALIASES.get(subject_type.strip())
    if aliases is None:
        raise ValueError(f"Unknown ACL subject type: {subject_type!r}")
    try:
        return aliases[raw.strip()]
    except KeyError:
        raise ValueError(
            f"Unknown ACL relation for {subject_type}: {raw!r}"
        ) from None


def validate_permission(permission: str) -> Permission:
    if permission not in PERMISSIONS:
        raise ValueError(
            f"Unknown permission: {permission!r} (expected one of {PERMISSIONS})"
        )
    return permission  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class User:
    user_id: int
    primary_org_id: int  # informational only, never gates permissions


@dataclass(frozen=True)
class Group:
    group_id: int
    org_id: int


@dataclass(frozen=True)
class Resource:
    resource_id: int
    org_id: int


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupHierarchyEdge:
    """Parent group includes the child's member or manager set."""

    parent_group_id: int
    child_group_id: int
    relation: str  # "member_group" | "manager_group"


@dataclass(frozen=True)
class GroupMembershipEdge:
    group_id: int
    user_id: int
    role: str  # "member" | "manager"


@dataclass(frozen=True)
class OrgMembershipEdge:
    org_id: int
    user_id: int
    role: str  # "member" | "admin"


@dataclass(frozen=True)
class ResourceAclEdge:
    resource_id: int
    subject_type: str  # "user" | "group"
    subject_id: int
    relation: str  # "viewer" | "manager"
