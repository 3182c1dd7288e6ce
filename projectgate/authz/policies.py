"""Declarative, versioned resource policies.

Every (resource, operation) pair maps to a rule: an OR of grants. A grant
names one access clause, optionally narrowed by membership role/position,
a writable-field allow-list (portal writes) or the token's document tabs.

Several versions of a resource's policy can be registered side by side and
the active one switched at runtime, so a policy change is a data change
rather than a rewrite of the predicates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from projectgate.models import MembershipRole, Operation, ProjectPosition

logger = logging.getLogger(__name__)


class Clause(str, Enum):
    ADMIN = "admin"
    AUTHENTICATED = "authenticated"
    PROJECT_ACCESS = "project_access"
    OWN_ROWS = "own_rows"
    CONTRACTOR_PORTAL = "contractor_portal"
    CLIENT_PORTAL = "client_portal"


@dataclass(frozen=True)
class Grant:
    clause: Clause
    roles: frozenset[MembershipRole] = frozenset()
    positions: frozenset[ProjectPosition] = frozenset()
    writable_fields: frozenset[str] | None = None  # None = any field
    filter_by_document_tabs: bool = False

    @property
    def is_narrowed(self) -> bool:
        return bool(self.roles or self.positions)

    def permits_fields(self, fields: Iterable[str] | None) -> bool:
        if self.writable_fields is None or fields is None:
            return True
        return set(fields) <= self.writable_fields


# Grant constructors -----------------------------------------------------------


def admin() -> Grant:
    return Grant(Clause.ADMIN)


def authenticated() -> Grant:
    return Grant(Clause.AUTHENTICATED)


def project_access(
    roles: Iterable[MembershipRole] = (),
    positions: Iterable[ProjectPosition] = (),
) -> Grant:
    return Grant(
        Clause.PROJECT_ACCESS,
        roles=frozenset(MembershipRole(r) for r in roles),
        positions=frozenset(ProjectPosition(p) for p in positions),
    )


def own_rows() -> Grant:
    return Grant(Clause.OWN_ROWS)


def contractor_portal(writable_fields: Iterable[str] | None = None) -> Grant:
    return Grant(
        Clause.CONTRACTOR_PORTAL,
        writable_fields=frozenset(writable_fields) if writable_fields is not None else None,
    )


def client_portal(filter_by_document_tabs: bool = False) -> Grant:
    return Grant(Clause.CLIENT_PORTAL, filter_by_document_tabs=filter_by_document_tabs)


# Policies ---------------------------------------------------------------------


@dataclass(frozen=True)
class ResourcePolicy:
    resource: str
    version: int
    rules: Mapping[Operation, tuple[Grant, ...]] = field(default_factory=dict)
    description: str = ""

    def rule(self, operation: Operation) -> tuple[Grant, ...]:
        """Grants for ``operation``; an empty tuple denies everyone but service."""
        return tuple(self.rules.get(Operation(operation), ()))


class PolicyRegistry:
    """Holds every registered policy version and which one is active."""

    def __init__(self) -> None:
        self._versions: dict[str, dict[int, ResourcePolicy]] = {}
        self._active: dict[str, int] = {}

    def register(self, policy: ResourcePolicy, activate: bool = False) -> None:
        versions = self._versions.setdefault(policy.resource, {})
        if policy.version in versions:
            raise ValueError(
                f"Policy {policy.resource} v{policy.version} is already registered"
            )
        versions[policy.version] = policy
        if activate or policy.resource not in self._active:
            self._active[policy.resource] = policy.version

    def activate(self, resource: str, version: int) -> None:
        if version not in self._versions.get(resource, {}):
            raise KeyError(f"No policy {resource} v{version}")
        previous = self._active.get(resource)
        self._active[resource] = version
        logger.info("Policy for %s switched from v%s to v%s", resource, previous, version)

    def active(self, resource: str) -> ResourcePolicy | None:
        version = self._active.get(resource)
        if version is None:
            return None
        return self._versions[resource][version]

    def versions(self, resource: str) -> list[int]:
        return sorted(self._versions.get(resource, {}))

    def resources(self) -> list[str]:
        return sorted(self._versions)

    def rule(self, resource: str, operation: Operation) -> tuple[Grant, ...]:
        policy = self.active(resource)
        if policy is None:
            return ()
        return policy.rule(operation)


R, C, U, D = Operation.READ, Operation.CREATE, Operation.UPDATE, Operation.DELETE

OWNER = MembershipRole.OWNER
EDITOR = MembershipRole.EDITOR

CABLE_ENTRY_CONTRACTOR_FIELDS = frozenset(
    {"contractor_installed", "installed_at", "measured_length", "contractor_notes"}
)
PROCUREMENT_CONTRACTOR_FIELDS = frozenset({"order_date", "expected_delivery"})
DELIVERY_CONFIRMATION_FIELDS = frozenset({"procurement_item_id", "confirmed_by_name", "notes"})


def _project_scoped(
    resource: str,
    *,
    read_extra: tuple[Grant, ...] = (),
    update_extra: tuple[Grant, ...] = (),
    create_extra: tuple[Grant, ...] = (),
    delete: tuple[Grant, ...] | None = None,
) -> ResourcePolicy:
    """Admin or project access for every operation, plus optional extras."""
    base = (admin(), project_access())
    return ResourcePolicy(
        resource=resource,
        version=1,
        rules={
            R: base + read_extra,
            C: base + create_extra,
            U: base + update_extra,
            D: delete if delete is not None else base,
        },
    )


def _append_only(resource: str) -> ResourcePolicy:
    return ResourcePolicy(
        resource=resource,
        version=1,
        rules={R: (admin(), project_access())},
        description="Audit history: readable with project access, never rewritten",
    )


def default_policies() -> list[ResourcePolicy]:
    """Version 1 of every resource policy."""
    return [
        ResourcePolicy(
            "projects",
            1,
            {
                R: (admin(), project_access(), contractor_portal(), client_portal()),
                C: (authenticated(),),
                U: (admin(), project_access(roles=[OWNER, EDITOR])),
                D: (admin(), project_access(roles=[OWNER])),
            },
        ),
        ResourcePolicy(
            "project_members",
            1,
            {
                R: (admin(), own_rows(), project_access()),
                C: (admin(), project_access(roles=[OWNER])),
                U: (admin(), project_access(roles=[OWNER])),
                D: (admin(), own_rows(), project_access(roles=[OWNER])),
            },
        ),
        _project_scoped(
            "tenants",
            delete=(admin(), project_access(roles=[OWNER, EDITOR])),
        ),
        _project_scoped("cable_schedules", read_extra=(contractor_portal(),)),
        _project_scoped(
            "cable_entries",
            read_extra=(contractor_portal(),),
            update_extra=(contractor_portal(CABLE_ENTRY_CONTRACTOR_FIELDS),),
        ),
        _project_scoped("project_boqs"),
        _project_scoped("boq_bills"),
        _project_scoped("boq_sections"),
        _project_scoped(
            "boq_items",
            delete=(
                admin(),
                project_access(
                    roles=[OWNER, EDITOR],
                    positions=[ProjectPosition.PRIMARY, ProjectPosition.SECONDARY],
                ),
            ),
        ),
        _project_scoped("roadmap_items", read_extra=(contractor_portal(),)),
        _project_scoped(
            "procurement_items",
            read_extra=(contractor_portal(),),
            update_extra=(contractor_portal(PROCUREMENT_CONTRACTOR_FIELDS),),
        ),
        _project_scoped(
            "delivery_confirmations",
            read_extra=(contractor_portal(),),
            create_extra=(contractor_portal(DELIVERY_CONFIRMATION_FIELDS),),
        ),
        _project_scoped(
            "project_documents",
            read_extra=(client_portal(filter_by_document_tabs=True),),
        ),
        ResourcePolicy(
            "contacts",
            1,
            {op: (authenticated(),) for op in (R, C, U, D)},
            description="Shared reference data",
        ),
        ResourcePolicy(
            "notifications",
            1,
            {R: (own_rows(),), U: (own_rows(),), D: (own_rows(),)},
        ),
        _append_only("tenant_change_audit_log"),
        _append_only("boq_item_history"),
        _append_only("procurement_audit_log"),
        _append_only("procurement_status_history"),
    ]


def default_registry() -> PolicyRegistry:
    registry = PolicyRegistry()
    for policy in default_policies():
        registry.register(policy)
    return registry
