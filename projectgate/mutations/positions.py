"""Single-holder project positions (one primary, one secondary per project).

The partial unique index on ``project_members(project_id, position)`` is what
makes this safe under concurrent writes. The pre-check only turns the common
case into a clear error before the database has to reject it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import ProjectMemberModel
from projectgate.errors import PositionConflictError
from projectgate.models import SINGLE_HOLDER_POSITIONS

_SINGLE_HOLDER_VALUES = frozenset(p.value for p in SINGLE_HOLDER_POSITIONS)


async def check_position_available(
    session: AsyncSession,
    project_id: UUID,
    position: str | None,
    member_id: UUID | None = None,
) -> None:
    """Raise PositionConflictError if another member already holds ``position``."""
    if position not in _SINGLE_HOLDER_VALUES:
        return
    stmt = select(ProjectMemberModel.id).where(
        ProjectMemberModel.project_id == project_id,
        ProjectMemberModel.position == position,
    )
    if member_id is not None:
        stmt = stmt.where(ProjectMemberModel.id != member_id)
    if await session.scalar(stmt.limit(1)) is not None:
        raise PositionConflictError(project_id, position)


async def validate_membership_position(
    session: AsyncSession,
    values: Mapping[str, Any],
    row: ProjectMemberModel | None = None,
) -> None:
    """Validate hook for ``project_members`` creates and updates."""
    position = values.get("position", row.position if row is not None else None)
    project_id = values.get("project_id", row.project_id if row is not None else None)
    await check_position_available(
        session, project_id, position, member_id=row.id if row is not None else None
    )


def is_position_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "uq_project_single_holder_position" in message or (
        "project_members.project_id, project_members.position" in message
    )

