"""Append-only audit trail for tracked entities.

One record per create/update/delete. Delete records keep the subject's id in
``subject_key`` but leave the foreign key null, since the row is gone.
Recording is isolated in a SAVEPOINT: a failed audit insert is logged and
never rolls back the write it describes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.core.timeutil import utcnow
from projectgate.db.models import (
    BOQItemHistoryModel,
    ProcurementAuditModel,
    TenantChangeAuditModel,
)
from projectgate.models import AuditEntry, ChangeType

logger = logging.getLogger(__name__)


def snapshot(row: Any) -> dict[str, Any]:
    """Column values of an ORM row, keyed by attribute name."""
    mapper = inspect(type(row))
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


def to_jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    raise TypeError(f"Cannot serialise {type(value).__name__} for audit snapshot")


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, Decimal) or isinstance(b, Decimal):
        try:
            return Decimal(str(a)) == Decimal(str(b))
        except (ArithmeticError, ValueError):
            return False
    return a == b


def diff_fields(old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> list[str]:
    """Keys whose value differs between two snapshots (may be empty)."""
    old = old or {}
    new = new or {}
    keys = list(old) + [k for k in new if k not in old]
    return [k for k in keys if not _same(old.get(k), new.get(k))]


@dataclass(frozen=True)
class AuditSpec:
    model: type
    subject_column: str


AUDIT_SPECS: dict[str, AuditSpec] = {
    "tenants": AuditSpec(TenantChangeAuditModel, "tenant_id"),
    "boq_items": AuditSpec(BOQItemHistoryModel, "boq_item_id"),
    "procurement_items": AuditSpec(ProcurementAuditModel, "procurement_item_id"),
}


class AuditTrail:
    """Writes audit records for one tracked resource type."""

    def __init__(self, resource: str, spec: AuditSpec | None = None):
        if spec is None and resource not in AUDIT_SPECS:
            raise KeyError(f"{resource} is not an audited resource")
        self.resource = resource
        self.spec = spec or AUDIT_SPECS[resource]

    def build(
        self,
        change_type: ChangeType,
        *,
        subject_id: UUID | None,
        project_id: UUID | None,
        old: Mapping[str, Any] | None,
        new: Mapping[str, Any] | None,
        actor: str | None,
    ):
        change_type = ChangeType(change_type)
        if change_type == ChangeType.CREATED:
            old = None
        elif change_type == ChangeType.DELETED:
            new = None

        changed = diff_fields(old, new) if change_type == ChangeType.UPDATED else []
        values = {
            "subject_key": str(subject_id) if subject_id is not None else None,
            "project_id": project_id,
            "change_type": change_type.value,
            "old_values": to_jsonable(old) if old is not None else None,
            "new_values": to_jsonable(new) if new is not None else None,
            "changed_fields": changed,
            "changed_by": actor,
            "changed_at": utcnow(),
            # The subject row no longer exists after a delete
            self.spec.subject_column: None if change_type == ChangeType.DELETED else subject_id,
        }
        return self.spec.model(**values)

    async def record(
        self,
        session: AsyncSession,
        change_type: ChangeType,
        *,
        subject_id: UUID | None,
        project_id: UUID | None,
        old: Mapping[str, Any] | None = None,
        new: Mapping[str, Any] | None = None,
        actor: str | None = None,
    ):
        """Append one audit record. Returns it, or None if recording failed."""
        try:
            entry = self.build(
                change_type,
                subject_id=subject_id,
                project_id=project_id,
                old=old,
                new=new,
                actor=actor,
            )
        except (TypeError, ValueError) as e:
            logger.error(
                "Audit snapshot failed for %s %s (%s): %s",
                self.resource,
                subject_id,
                change_type,
                e,
            )
            return None

        try:
            async with session.begin_nested():
                session.add(entry)
                await session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Audit insert failed for %s %s (%s): %s",
                self.resource,
                subject_id,
                change_type,
                e,
            )
            return None

        logger.debug("Audit %s %s %s by %s", self.resource, change_type, subject_id, actor)
        return entry


def to_entry(resource: str, record: Any) -> AuditEntry:
    spec = AUDIT_SPECS[resource]
    subject = getattr(record, spec.subject_column)
    if subject is None and record.subject_key:
        subject = UUID(record.subject_key)
    return AuditEntry(
        id=record.id,
        entity_type=resource,
        entity_id=subject,
        project_id=record.project_id,
        change_type=ChangeType(record.change_type),
        old_values=record.old_values,
        new_values=record.new_values,
        changed_fields=list(record.changed_fields or []),
        changed_by=record.changed_by,
        changed_at=record.changed_at,
    )


async def audit_report(
    session: AsyncSession,
    resource: str,
    project_id: UUID | None = None,
    limit: int = 100,
) -> list[AuditEntry]:
    """Change history for one resource type, newest first."""
    model = AUDIT_SPECS[resource].model
    stmt = select(model).order_by(model.changed_at.desc()).limit(limit)
    if project_id is not None:
        stmt = stmt.where(model.project_id == project_id)
    result = await session.execute(stmt)
    return [to_entry(resource, record) for record in result.scalars().all()]
