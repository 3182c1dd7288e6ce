"""Tenant schedule fan-out.

Each tenant change bumps the project's schedule version and notifies every
other member. Re-running may duplicate notifications; that is tolerated.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import NotificationModel, ProjectMemberModel, ProjectModel
from projectgate.models import ChangeType

logger = logging.getLogger(__name__)

TENANT_SCHEDULE_CHANGED = "tenant_schedule_changed"


async def bump_tenant_schedule_version(session: AsyncSession, project_id: UUID) -> int | None:
    await session.execute(
        update(ProjectModel)
        .where(ProjectModel.id == project_id)
        .values(tenant_schedule_version=ProjectModel.tenant_schedule_version + 1)
    )
    return await session.scalar(
        select(ProjectModel.tenant_schedule_version).where(ProjectModel.id == project_id)
    )


async def notify_project_members(
    session: AsyncSession,
    project_id: UUID,
    *,
    actor_id: UUID | None,
    kind: str,
    title: str,
    message: str | None = None,
    entity_type: str | None = None,
    entity_key: str | None = None,
) -> int:
    """Insert one notification per project member except the actor."""
    stmt = select(ProjectMemberModel.user_id).where(ProjectMemberModel.project_id == project_id)
    if actor_id is not None:
        stmt = stmt.where(ProjectMemberModel.user_id != actor_id)
    recipients = (await session.execute(stmt)).scalars().all()

    for user_id in recipients:
        session.add(
            NotificationModel(
                user_id=user_id,
                project_id=project_id,
                kind=kind,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_key=entity_key,
            )
        )
    await session.flush()
    return len(recipients)


async def fan_out_tenant_change(
    session: AsyncSession,
    project_id: UUID,
    tenant_id: UUID,
    change_type: ChangeType,
    actor_id: UUID | None,
    shop_number: str | None = None,
) -> int:
    """Schedule-version bump plus member notifications for one tenant change."""
    version = await bump_tenant_schedule_version(session, project_id)
    label = f"Shop {shop_number}" if shop_number else "A tenant"
    sent = await notify_project_members(
        session,
        project_id,
        actor_id=actor_id,
        kind=TENANT_SCHEDULE_CHANGED,
        title="Tenant schedule updated",
        message=f"{label} was {ChangeType(change_type).value} (schedule v{version})",
        entity_type="tenants",
        entity_key=str(tenant_id),
    )
    logger.info(
        "Tenant %s %s: schedule v%s, %d notification(s)",
        tenant_id,
        ChangeType(change_type).value,
        version,
        sent,
    )
    return sent
