"""Identity and role resolution.

Roles live in the dedicated ``user_roles`` table and are looked up fresh on
every call. Nothing here caches a "current role": a revoked admin loses
admin rights on the very next request.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import UserModel, UserRoleModel
from projectgate.models import (
    ROLE_PRECEDENCE,
    GlobalRole,
    Principal,
    PrincipalKind,
    RequestContext,
)
from projectgate.portal.rate_limit import AttemptLimiter, admit_credential

logger = logging.getLogger(__name__)


async def resolve_role(session: AsyncSession, user_id: UUID) -> GlobalRole:
    """Return the most privileged role held by ``user_id``.

    Fails closed: an account with no role row (or only unknown role values)
    resolves to ``user``, never to ``admin``.
    """
    result = await session.execute(
        select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
    )
    held: set[GlobalRole] = set()
    for value in result.scalars():
        try:
            held.add(GlobalRole(value))
        except ValueError:
            logger.warning("Ignoring unknown role %r for user %s", value, user_id)

    for role in ROLE_PRECEDENCE:
        if role in held:
            return role
    return GlobalRole.USER


async def resolve_principal(
    session: AsyncSession,
    context: RequestContext,
    limiter: AttemptLimiter | None = None,
) -> Principal:
    """Turn raw request claims into a Principal.

    - service flag set -> service principal (bypasses predicates)
    - verified user id of an existing account -> authenticated, role resolved now
    - anything else -> anonymous, carrying whatever portal credential was presented

    A short code counts against the caller's attempt window; once that is
    exhausted the credential is dropped and the caller sees nothing.
    """
    if context.is_service:
        return Principal.service()

    if context.user_id is not None:
        exists = await session.scalar(
            select(func.count()).select_from(UserModel).where(UserModel.id == context.user_id)
        )
        if exists:
            role = await resolve_role(session, context.user_id)
            return Principal(
                kind=PrincipalKind.AUTHENTICATED,
                user_id=context.user_id,
                role=role,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
        logger.warning("Session identity %s has no account; treating as anonymous", context.user_id)

    credential = context.portal_credential
    if not await admit_credential(credential, context.ip_address, limiter):
        logger.warning("Dropping throttled portal short code from %s", context.ip_address or "unknown")
        credential = None

    return Principal.anonymous(
        portal_credential=credential,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
    )


async def register_user(
    session: AsyncSession,
    email: str,
    display_name: str | None = None,
    confirmed: bool = False,
) -> UserModel:
    """Signup hook: create the account with the default ``user`` role.

    The first account to sign up (or the earliest confirmed one) becomes admin.
    """
    user = UserModel(email=email.strip().lower(), display_name=display_name, confirmed=confirmed)
    session.add(user)
    await session.flush()

    session.add(UserRoleModel(user_id=user.id, role=GlobalRole.USER.value))
    await session.flush()

    await seed_admin(session)
    return user


async def seed_admin(session: AsyncSession) -> UUID | None:
    """Promote exactly one account to admin when none exists yet.

    Picks the earliest-created confirmed account, falling back to the
    earliest account overall. Returns the promoted user id, or None when an
    admin already exists or there are no accounts. Safe to call repeatedly.
    """
    has_admin = await session.scalar(
        select(func.count())
        .select_from(UserRoleModel)
        .where(UserRoleModel.role == GlobalRole.ADMIN.value)
    )
    if has_admin:
        return None

    candidate = await session.scalar(
        select(UserModel.id)
        .where(UserModel.confirmed.is_(True))
        .order_by(UserModel.created_at.asc(), UserModel.id.asc())
        .limit(1)
    )
    if candidate is None:
        candidate = await session.scalar(
            select(UserModel.id).order_by(UserModel.created_at.asc(), UserModel.id.asc()).limit(1)
        )
    if candidate is None:
        return None

    session.add(UserRoleModel(user_id=candidate, role=GlobalRole.ADMIN.value))
    await session.flush()
    logger.info("Seeded admin role for user %s", candidate)
    return candidate


async def set_role(
    session: AsyncSession,
    actor: Principal,
    user_id: UUID,
    role: GlobalRole,
) -> bool:
    """Replace ``user_id``'s global role.

    Only admins (re-checked against the role store) and service principals
    may change roles. Denial is silent: returns False and changes nothing.
    Demoting the last remaining admin is refused the same way.
    """
    if not actor.is_service:
        if not actor.is_authenticated:
            return False
        if await resolve_role(session, actor.user_id) != GlobalRole.ADMIN:
            logger.info("Role change for %s denied to %s", user_id, actor.actor_label)
            return False

    if role != GlobalRole.ADMIN:
        admin_ids = (
            await session.execute(
                select(UserRoleModel.user_id).where(UserRoleModel.role == GlobalRole.ADMIN.value)
            )
        ).scalars().all()
        if set(admin_ids) == {user_id}:
            logger.warning("Refusing to demote the last admin %s", user_id)
            return False

    await session.execute(delete(UserRoleModel).where(UserRoleModel.user_id == user_id))
    session.add(UserRoleModel(user_id=user_id, role=role.value))
    await session.flush()
    logger.info("User %s role set to %s by %s", user_id, role.value, actor.actor_label)
    return True
