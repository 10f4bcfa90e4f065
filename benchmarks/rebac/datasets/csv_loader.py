"""CSV dataset reader and writer.

Directory layout (one header row per file):

    organizations.csv      org_id
    users.csv              user_id, primary_org_id
    groups.csv             group_id, org_id
    org_memberships.csv    org_id, user_id, role
    group_memberships.csv  group_id, user_id, role
    group_hierarchy.csv    parent_group_id, child_group_id, relation   (optional)
    resources.csv          resource_id, org_id
    resource_acl.csv       resource_id, subject_type, subject_id, relation

Rows are validated with Pydantic models; legacy role and relation spellings
(``direct_manager``, ``viewer_user``, ``manager_group`` ...) are normalized
on the way in.
"""

from __future__ import annotations

import csv
import logging
import time
from collections.abc import Iterator
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from benchmarks.rebac.errors import MalformedRow
from benchmarks.rebac.graph import GraphSnapshot
from benchmarks.rebac.models import (
    Group,
    GroupHierarchyEdge,
    GroupMembershipEdge,
    OrgMembershipEdge,
    Resource,
    ResourceAclEdge,
    User,
    normalize_acl_relation,
    normalize_group_role,
    normalize_hierarchy_relation,
    normalize_org_role,
)

logger = logging.getLogger(__name__)

ORGANIZATIONS_CSV = "organizations.csv"
USERS_CSV = "users.csv"
GROUPS_CSV = "groups.csv"
ORG_MEMBERSHIPS_CSV = "org_memberships.csv"
GROUP_MEMBERSHIPS_CSV = "group_memberships.csv"
GROUP_HIERARCHY_CSV = "group_hierarchy.csv"
RESOURCES_CSV = "resources.csv"
RESOURCE_ACL_CSV = "resource_acl.csv"

_PROGRESS_EVERY = 100_000


# ---------------------------------------------------------------------------
# Row models
# ---------------------------------------------------------------------------


class _Row(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="ignore")


class OrganizationRow(_Row):
    org_id: int


class UserRow(_Row):
    user_id: int
    primary_org_id: int


class GroupRow(_Row):
    group_id: int
    org_id: int


class OrgMembershipRow(_Row):
    org_id: int
    user_id: int
    role: str

    @field_validator("role")
    @classmethod
    def canonical_role(cls, v: str) -> str:
        return normalize_org_role(v)


class GroupMembershipRow(_Row):
    group_id: int
    user_id: int
    role: str

    @field_validator("role")
    @classmethod
    def canonical_role(cls, v: str) -> str:
        return normalize_group_role(v)


class GroupHierarchyRow(_Row):
    parent_group_id: int
    child_group_id: int
    relation: str

    @field_validator("relation")
    @classmethod
    def canonical_relation(cls, v: str) -> str:
        return normalize_hierarchy_relation(v)


class ResourceRow(_Row):
    resource_id: int
    org_id: int


class ResourceAclRow(_Row):
    resource_id: int
    subject_type: str
    subject_id: int
    relation: str

    @field_validator("relation")
    @classmethod
    def canonical_relation(cls, v: str, info: ValidationInfo) -> str:
        subject_type = info.data.get("subject_type")
        if subject_type is None:
            raise ValueError("subject_type is required before relation")
        return normalize_acl_relation(subject_type, v)


RowT = TypeVar("RowT", bound=_Row)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class CsvDataset:
    """Load a ``GraphSnapshot`` from a directory of CSV files."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir).expanduser()

    @property
    def name(self) -> str:
        return "csv"

    def exists(self) -> bool:
        """True when every required CSV file is present."""
        return all((self.data_dir / f).is_file() for f in _REQUIRED_FILES)

    def load(self) -> GraphSnapshot:
        """Read and validate every file.

        Raises:
            FileNotFoundError: A required CSV file is missing.
            MalformedRow: A row has missing fields or invalid values.
        """
        start = time.perf_counter()
        logger.info("Loading CSV dataset from %s", self.data_dir)

        snapshot = GraphSnapshot(
            org_ids=tuple(r.org_id for r in self._rows(ORGANIZATIONS_CSV, OrganizationRow)),
            user_rows=tuple(
                User(r.user_id, r.primary_org_id) for r in self._rows(USERS_CSV, UserRow)
            ),
            group_rows=tuple(
                Group(r.group_id, r.org_id) for r in self._rows(GROUPS_CSV, GroupRow)
            ),
            hierarchy=tuple(
                GroupHierarchyEdge(r.parent_group_id, r.child_group_id, r.relation)
                for r in self._rows(GROUP_HIERARCHY_CSV, GroupHierarchyRow, required=False)
            ),
            group_memberships=tuple(
                GroupMembershipEdge(r.group_id, r.user_id, r.role)
                for r in self._rows(GROUP_MEMBERSHIPS_CSV, GroupMembershipRow)
            ),
            org_memberships=tuple(
                OrgMembershipEdge(r.org_id, r.user_id, r.role)
                for r in self._rows(ORG_MEMBERSHIPS_CSV, OrgMembershipRow)
            ),
            resource_rows=tuple(
                Resource(r.resource_id, r.org_id)
                for r in self._rows(RESOURCES_CSV, ResourceRow)
            ),
            acl=tuple(
                ResourceAclEdge(r.resource_id, r.subject_type, r.subject_id, r.relation)
                for r in self._rows(RESOURCE_ACL_CSV, ResourceAclRow)
            ),
        )
        logger.info(
            "CSV dataset loaded in %.1fms", (time.perf_counter() - start) * 1000
        )
        return snapshot

    def _rows(
        self, filename: str, model: type[RowT], *, required: bool = True
    ) -> Iterator[RowT]:
        path = self.data_dir / filename
        if not path.is_file():
            if required:
                raise FileNotFoundError(f"Dataset file not found: {path}")
            logger.info("%s not found, skipping", filename)
            return

        count = 0
        with path.open(newline="", encoding="utf-8") as fh:
            reader = csv.DictReader(fh)
            missing = set(model.model_fields) - set(reader.fieldnames or ())
            if missing:
                raise MalformedRow(filename, 1, f"missing columns {sorted(missing)}")
            for row in reader:
                try:
                    yield model.model_validate(row)
                except ValidationError as exc:
                    first = exc.errors()[0]
                    field = ".".join(str(p) for p in first["loc"]) or "row"
                    raise MalformedRow(
                        filename, reader.line_num, f"{field}: {first['msg']}"
                    ) from exc
                count += 1
                if count % _PROGRESS_EVERY == 0:
                    logger.debug("Loaded %s progress: %d rows", filename, count)
        logger.info("Loaded %s: %d rows", filename, count)


_REQUIRED_FILES = (
    ORGANIZATIONS_CSV,
    USERS_CSV,
    GROUPS_CSV,
    ORG_MEMBERSHIPS_CSV,
    GROUP_MEMBERSHIPS_CSV,
    RESOURCES_CSV,
    RESOURCE_ACL_CSV,
)


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


def write_csv_dataset(snapshot: GraphSnapshot, data_dir: str | Path) -> dict[str, int]:
    """Write a snapshot in the CSV layout. Returns row counts per file."""
    out = Path(data_dir).expanduser()
    out.mkdir(parents=True, exist_ok=True)

    tables: dict[str, tuple[tuple[str, ...], list[tuple[object, ...]]]] = {
        ORGANIZATIONS_CSV: (("org_id",), [(o,) for o in snapshot.org_ids]),
        USERS_CSV: (
            ("user_id", "primary_org_id"),
            [(u.user_id, u.primary_org_id) for u in snapshot.user_rows],
        ),
        GROUPS_CSV: (
            ("group_id", "org_id"),
            [(g.group_id, g.org_id) for g in snapshot.group_rows],
        ),
        ORG_MEMBERSHIPS_CSV: (
            ("org_id", "user_id", "role"),
            [(m.org_id, m.user_id, m.role) for m in snapshot.org_memberships],
        ),
        GROUP_MEMBERSHIPS_CSV: (
            ("group_id", "user_id", "role"),
            [(m.group_id, m.user_id, m.role) for m in snapshot.group_memberships],
        ),
        GROUP_HIERARCHY_CSV: (
            ("parent_group_id", "child_group_id", "relation"),
            [(h.parent_group_id, h.child_group_id, h.relation) for h in snapshot.hierarchy],
        ),
        RESOURCES_CSV: (
            ("resource_id", "org_id"),
            [(r.resource_id, r.org_id) for r in snapshot.resource_rows],
        ),
        RESOURCE_ACL_CSV: (
            ("resource_id", "subject_type", "subject_id", "relation"),
            [(a.resource_id, a.subject_type, a.subject_id, a.relation) for a in snapshot.acl],
        ),
    }

    counts: dict[str, int] = {}
    for filename, (header, rows) in tables.items():
        with (out / filename).open("w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(header)
            writer.writerows(rows)
        counts[filename] = len(rows)
        logger.debug("Wrote %s: %d rows", filename, len(rows))
    return counts
