"""How each resource type reaches its project.

Resources either carry ``project_id`` themselves or hang off a parent chain
(e.g. boq item -> section -> bill -> boq -> project). Authorization for a row
is authorization for the project at the end of that chain.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import (
    Base,
    BOQBillModel,
    BOQItemHistoryModel,
    BOQItemModel,
    BOQSectionModel,
    CableEntryModel,
    CableScheduleModel,
    ContactModel,
    DeliveryConfirmationModel,
    NotificationModel,
    ProcurementAuditModel,
    ProcurementItemModel,
    ProcurementStatusHistoryModel,
    ProjectBOQModel,
    ProjectDocumentModel,
    ProjectMemberModel,
    ProjectModel,
    RoadmapItemModel,
    TenantChangeAuditModel,
    TenantModel,
)


@dataclass(frozen=True)
class ParentHop:
    """One step up the chain: ``child.<foreign_key> -> parent.id``."""

    foreign_key: str
    parent: type[Base]


@dataclass(frozen=True)
class ResourceScope:
    name: str
    model: type[Base]
    parents: tuple[ParentHop, ...] = ()
    project_field: str | None = "project_id"  # on the last model in the chain; None = unscoped
    document_category_field: str | None = None
    owner_column: str | None = None  # user column for own-row rules
    immutable: bool = False  # audit tables: append-only

    @property
    def is_project_scoped(self) -> bool:
        return self.project_field is not None

    def _chain_end(self) -> type[Base]:
        return self.parents[-1].parent if self.parents else self.model

    def project_column(self):
        """Column holding the project id once ``scoped_select`` joins are applied."""
        if self.project_field is None:
            return None
        return getattr(self._chain_end(), self.project_field)

    def scoped_select(self) -> Select:
        """``SELECT model`` with the joins needed to reach the project column."""
        stmt = select(self.model)
        child = self.model
        for hop in self.parents:
            stmt = stmt.join(hop.parent, getattr(child, hop.foreign_key) == hop.parent.id)
            child = hop.parent
        return stmt

    async def resolve_project_id(self, session: AsyncSession, row: Any) -> UUID | None:
        """Walk the parent chain from a row or a values mapping."""
        if self.project_field is None:
            return None

        def read(source: Any, key: str) -> Any:
            if isinstance(source, Mapping):
                return source.get(key)
            return getattr(source, key, None)

        current: Any = row
        for hop in self.parents:
            parent_id = read(current, hop.foreign_key)
            if parent_id is None:
                return None
            current = await session.get(hop.parent, parent_id)
            if current is None:
                return None
        return read(current, self.project_field)


def _scopes(*scopes: ResourceScope) -> dict[str, ResourceScope]:
    return {scope.name: scope for scope in scopes}


_BOQ_SECTION_CHAIN = (
    ParentHop("bill_id", BOQBillModel),
    ParentHop("boq_id", ProjectBOQModel),
)

SCOPES: dict[str, ResourceScope] = _scopes(
    ResourceScope("projects", ProjectModel, project_field="id", owner_column="created_by"),
    ResourceScope("project_members", ProjectMemberModel, owner_column="user_id"),
    ResourceScope("tenants", TenantModel),
    ResourceScope("cable_schedules", CableScheduleModel),
    ResourceScope(
        "cable_entries",
        CableEntryModel,
        parents=(ParentHop("schedule_id", CableScheduleModel),),
    ),
    ResourceScope("project_boqs", ProjectBOQModel),
    ResourceScope(
        "boq_bills",
        BOQBillModel,
        parents=(ParentHop("boq_id", ProjectBOQModel),),
    ),
    ResourceScope("boq_sections", BOQSectionModel, parents=_BOQ_SECTION_CHAIN),
    ResourceScope(
        "boq_items",
        BOQItemModel,
        parents=(ParentHop("section_id", BOQSectionModel),) + _BOQ_SECTION_CHAIN,
    ),
    ResourceScope("roadmap_items", RoadmapItemModel),
    ResourceScope("procurement_items", ProcurementItemModel),
    ResourceScope(
        "delivery_confirmations",
        DeliveryConfirmationModel,
        parents=(ParentHop("procurement_item_id", ProcurementItemModel),),
    ),
    ResourceScope("project_documents", ProjectDocumentModel, document_category_field="category"),
    ResourceScope("contacts", ContactModel, project_field=None),
    ResourceScope("notifications", NotificationModel, project_field=None, owner_column="user_id"),
    ResourceScope("tenant_change_audit_log", TenantChangeAuditModel, immutable=True),
    ResourceScope("boq_item_history", BOQItemHistoryModel, immutable=True),
    ResourceScope("procurement_audit_log", ProcurementAuditModel, immutable=True),
    ResourceScope("procurement_status_history", ProcurementStatusHistoryModel, immutable=True),
)


def get_scope(resource: str) -> ResourceScope:
    try:
        return SCOPES[resource]
    except KeyError:
        raise KeyError(f"Unknown resource type: {resource}") from None
