"""Procurement status propagation."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.core.timeutil import utcnow
from projectgate.db.models import (
    ProcurementItemModel,
    ProcurementStatusHistoryModel,
    RoadmapItemModel,
)
from projectgate.models import ProcurementStatus

logger = logging.getLogger(__name__)


async def record_status_change(
    session: AsyncSession,
    item: ProcurementItemModel,
    from_status: str | None,
    actor: str | None,
    now: datetime | None = None,
) -> ProcurementStatusHistoryModel | None:
    """Append a history row when ``item.status`` differs from ``from_status``."""
    if from_status == item.status:
        return None
    entry = ProcurementStatusHistoryModel(
        procurement_item_id=item.id,
        project_id=item.project_id,
        from_status=from_status,
        to_status=item.status,
        changed_by=actor,
        changed_at=now or utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry


async def complete_linked_roadmap_item(
    session: AsyncSession,
    roadmap_item_id: UUID | None,
    now: datetime | None = None,
) -> bool:
    """Mark the linked roadmap item complete. Already-complete items are left alone."""
    if roadmap_item_id is None:
        return False
    roadmap = await session.get(RoadmapItemModel, roadmap_item_id)
    if roadmap is None or roadmap.is_completed:
        return False
    roadmap.is_completed = True
    roadmap.completed_at = now or utcnow()
    await session.flush()
    logger.info("Roadmap item %s completed by procurement delivery", roadmap_item_id)
    return True


async def propagate_procurement_status(
    session: AsyncSession,
    item: ProcurementItemModel,
    from_status: str | None,
    actor: str | None,
) -> None:
    """History row for any status change; roadmap completion on ``delivered``."""
    now = utcnow()
    entry = await record_status_change(session, item, from_status, actor, now)
    if entry is not None and item.status == ProcurementStatus.DELIVERED.value:
        await complete_linked_roadmap_item(session, item.roadmap_item_id, now)
