"""Access predicates.

Boolean checks combining identity, membership and portal state. They read
``user_roles``, ``project_members``, ``projects`` and ``portal_tokens``
directly and never go through the policy layer, so no predicate ever
evaluates the rule of the table it is reading.

Each check comes in two forms: an awaitable returning bool for a single
(principal, project) pair, and a SQL expression used to filter rows.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import ColumnElement, false, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import PortalTokenModel, ProjectMemberModel, ProjectModel
from projectgate.identity import resolve_role
from projectgate.models import (
    GlobalRole,
    MembershipRole,
    Principal,
    ProjectPosition,
    TokenClass,
)
from projectgate.portal.lookup import find_token, is_live


async def is_admin(session: AsyncSession, principal: Principal) -> bool:
    """True iff the caller's global role is admin (looked up now)."""
    if not principal.is_authenticated:
        return False
    return await resolve_role(session, principal.user_id) == GlobalRole.ADMIN


async def is_project_member(session: AsyncSession, principal: Principal, project_id: UUID) -> bool:
    if not principal.is_authenticated or project_id is None:
        return False
    found = await session.scalar(
        select(ProjectMemberModel.id).where(
            ProjectMemberModel.project_id == project_id,
            ProjectMemberModel.user_id == principal.user_id,
        )
    )
    return found is not None


async def is_project_creator(session: AsyncSession, principal: Principal, project_id: UUID) -> bool:
    if not principal.is_authenticated or project_id is None:
        return False
    created_by = await session.scalar(
        select(ProjectModel.created_by).where(ProjectModel.id == project_id)
    )
    return created_by is not None and created_by == principal.user_id


async def any_of(*checks: Callable[[], Awaitable[bool]]) -> bool:
    """Short-circuiting OR over lazily evaluated checks."""
    for check in checks:
        if await check():
            return True
    return False


async def has_project_access(session: AsyncSession, principal: Principal, project_id: UUID) -> bool:
    """General "can see this project's data" gate: member, admin or creator."""
    return await any_of(
        lambda: is_project_member(session, principal, project_id),
        lambda: is_admin(session, principal),
        lambda: is_project_creator(session, principal, project_id),
    )


async def has_membership(
    session: AsyncSession,
    principal: Principal,
    project_id: UUID,
    roles: Iterable[MembershipRole] = (),
    positions: Iterable[ProjectPosition] = (),
) -> bool:
    """Membership narrowed to given roles or positions. The creator counts as owner."""
    roles = {MembershipRole(r) for r in roles}
    positions = {ProjectPosition(p) for p in positions}
    if not principal.is_authenticated or project_id is None:
        return False

    if MembershipRole.OWNER in roles and await is_project_creator(session, principal, project_id):
        return True

    member = await session.scalar(
        select(ProjectMemberModel).where(
            ProjectMemberModel.project_id == project_id,
            ProjectMemberModel.user_id == principal.user_id,
        )
    )
    if member is None:
        return False
    if member.role in {r.value for r in roles}:
        return True
    return member.position is not None and member.position in {p.value for p in positions}


async def presented_token(
    session: AsyncSession,
    principal: Principal,
    now: datetime | None = None,
) -> PortalTokenModel | None:
    """The live token an anonymous principal presented, if any."""
    if not principal.is_anonymous or not principal.portal_credential:
        return None
    token = await find_token(session, principal.portal_credential)
    if token is None or not is_live(token, now):
        return None
    return token


async def has_valid_portal_token(
    session: AsyncSession,
    principal: Principal,
    project_id: UUID,
    token_class: TokenClass,
    now: datetime | None = None,
) -> bool:
    """The presented token is active, unexpired, of ``token_class`` and scoped to ``project_id``."""
    token = await presented_token(session, principal, now)
    return (
        token is not None
        and token.token_class == TokenClass(token_class).value
        and token.project_id == project_id
    )


async def has_valid_contractor_portal_token(
    session: AsyncSession, principal: Principal, project_id: UUID, now: datetime | None = None
) -> bool:
    return await has_valid_portal_token(session, principal, project_id, TokenClass.CONTRACTOR, now)


async def has_valid_client_portal_token(
    session: AsyncSession, principal: Principal, project_id: UUID, now: datetime | None = None
) -> bool:
    return await has_valid_portal_token(session, principal, project_id, TokenClass.CLIENT, now)


# ============================================================================
# SQL forms
# ============================================================================


def member_project_ids(
    user_id: UUID,
    roles: Iterable[MembershipRole] = (),
    positions: Iterable[ProjectPosition] = (),
):
    """Subquery of project ids where ``user_id`` is a member (optionally narrowed)."""
    stmt = select(ProjectMemberModel.project_id).where(ProjectMemberModel.user_id == user_id)
    role_values = [MembershipRole(r).value for r in roles]
    position_values = [ProjectPosition(p).value for p in positions]
    narrowing = []
    if role_values:
        narrowing.append(ProjectMemberModel.role.in_(role_values))
    if position_values:
        narrowing.append(ProjectMemberModel.position.in_(position_values))
    if narrowing:
        stmt = stmt.where(or_(*narrowing))
    return stmt


def created_project_ids(user_id: UUID):
    return select(ProjectModel.id).where(ProjectModel.created_by == user_id)


def project_access_clause(
    project_column,
    user_id: UUID | None,
    roles: Iterable[MembershipRole] = (),
    positions: Iterable[ProjectPosition] = (),
) -> ColumnElement[bool]:
    """Row filter: ``project_column`` is a project the user may reach.

    Without narrowing this is membership OR creator. With narrowing the
    creator only qualifies when ``owner`` is among the roles.
    """
    if user_id is None:
        return false()
    roles = [MembershipRole(r) for r in roles]
    positions = [ProjectPosition(p) for p in positions]

    clauses = [project_column.in_(member_project_ids(user_id, roles, positions))]
    if not roles and not positions or MembershipRole.OWNER in roles:
        clauses.append(project_column.in_(created_project_ids(user_id)))
    return or_(*clauses)
