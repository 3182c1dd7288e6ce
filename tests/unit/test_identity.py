"""Tests for identity and global role resolution."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import fakeredis
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import UserModel, UserRoleModel
from projectgate.identity import (
    register_user,
    resolve_principal,
    resolve_role,
    seed_admin,
    set_role,
)
from projectgate.models import GlobalRole, Principal, PrincipalKind, RequestContext
from projectgate.portal.rate_limit import AttemptLimiter


@pytest.mark.asyncio
async def test_first_account_becomes_admin(db_session: AsyncSession):
    first = await register_user(db_session, "First@Example.com")
    second = await register_user(db_session, "second@example.com")

    assert first.email == "first@example.com"
    assert await resolve_role(db_session, first.id) == GlobalRole.ADMIN
    assert await resolve_role(db_session, second.id) == GlobalRole.USER


@pytest.mark.asyncio
async def test_resolve_role_without_rows_fails_closed(db_session: AsyncSession):
    user = UserModel(email="loner@example.com")
    db_session.add(user)
    await db_session.flush()

    assert await resolve_role(db_session, user.id) == GlobalRole.USER


@pytest.mark.asyncio
async def test_resolve_role_picks_most_privileged(db_session: AsyncSession):
    user = UserModel(email="multi@example.com")
    db_session.add(user)
    await db_session.flush()
    db_session.add_all(
        [
            UserRoleModel(user_id=user.id, role="client"),
            UserRoleModel(user_id=user.id, role="moderator"),
        ]
    )
    await db_session.flush()

    assert await resolve_role(db_session, user.id) == GlobalRole.MODERATOR


@pytest.mark.asyncio
async def test_seed_admin_prefers_earliest_confirmed(db_session: AsyncSession):
    unconfirmed = UserModel(email="early@example.com", created_at=datetime(2026, 1, 1))
    confirmed = UserModel(
        email="later@example.com", confirmed=True, created_at=datetime(2026, 1, 2)
    )
    db_session.add_all([unconfirmed, confirmed])
    await db_session.flush()

    promoted = await seed_admin(db_session)

    assert promoted == confirmed.id
    assert await seed_admin(db_session) is None


@pytest.mark.asyncio
async def test_seed_admin_falls_back_to_earliest_account(db_session: AsyncSession):
    early = UserModel(email="early@example.com", created_at=datetime(2026, 1, 1))
    late = UserModel(email="late@example.com", created_at=datetime(2026, 1, 2))
    db_session.add_all([late, early])
    await db_session.flush()

    assert await seed_admin(db_session) == early.id


@pytest.mark.asyncio
async def test_seed_admin_without_accounts(db_session: AsyncSession):
    assert await seed_admin(db_session) is None


class TestResolvePrincipal:
    @pytest.mark.asyncio
    async def test_service_flag(self, db_session: AsyncSession):
        principal = await resolve_principal(db_session, RequestContext(is_service=True))

        assert principal.is_service
        assert principal.actor_label == "service"

    @pytest.mark.asyncio
    async def test_known_user(self, db_session: AsyncSession, world):
        context = RequestContext(user_id=world.member.id, ip_address="10.0.0.9")

        principal = await resolve_principal(db_session, context)

        assert principal.kind == PrincipalKind.AUTHENTICATED
        assert principal.role == GlobalRole.USER
        assert principal.ip_address == "10.0.0.9"

    @pytest.mark.asyncio
    async def test_unknown_user_is_anonymous(self, db_session: AsyncSession):
        context = RequestContext(user_id=uuid4(), portal_credential="ABCD1234")

        principal = await resolve_principal(db_session, context)

        assert principal.is_anonymous
        assert principal.portal_credential == "ABCD1234"

    @pytest.mark.asyncio
    async def test_portal_bearer(self, db_session: AsyncSession):
        principal = await resolve_principal(
            db_session, RequestContext(portal_credential="deadbeef")
        )

        assert principal.is_anonymous
        assert not principal.is_authenticated
        assert principal.actor_label == "portal"


class TestSetRole:
    @pytest.mark.asyncio
    async def test_admin_can_promote(self, db_session: AsyncSession, world):
        changed = await set_role(db_session, world.as_admin, world.member.id, GlobalRole.MODERATOR)

        assert changed is True
        assert await resolve_role(db_session, world.member.id) == GlobalRole.MODERATOR

    @pytest.mark.asyncio
    async def test_non_admin_denied_silently(self, db_session: AsyncSession, world):
        changed = await set_role(db_session, world.as_member, world.member.id, GlobalRole.ADMIN)

        assert changed is False
        assert await resolve_role(db_session, world.member.id) == GlobalRole.USER

    @pytest.mark.asyncio
    async def test_stale_admin_claim_is_rechecked(self, db_session: AsyncSession, world):
        # Principal claims admin but the role store says otherwise
        impostor = Principal.user(world.member.id, GlobalRole.ADMIN)

        assert await set_role(db_session, impostor, world.owner.id, GlobalRole.ADMIN) is False

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_demoted(self, db_session: AsyncSession, world):
        changed = await set_role(db_session, Principal.service(), world.admin.id, GlobalRole.USER)

        assert changed is False
        assert await resolve_role(db_session, world.admin.id) == GlobalRole.ADMIN

    @pytest.mark.asyncio
    async def test_revoked_admin_loses_rights_immediately(self, db_session: AsyncSession, world):
        await set_role(db_session, Principal.service(), world.owner.id, GlobalRole.ADMIN)
        assert await resolve_role(db_session, world.owner.id) == GlobalRole.ADMIN

        await set_role(db_session, world.as_admin, world.owner.id, GlobalRole.USER)

        assert await resolve_role(db_session, world.owner.id) == GlobalRole.USER
        count = await db_session.scalar(
            select(func.count())
            .select_from(UserRoleModel)
            .where(UserRoleModel.user_id == world.owner.id)
        )
        assert count == 1


class TestShortCodeThrottling:
    @pytest.mark.asyncio
    async def test_throttled_short_code_is_dropped(self, db_session: AsyncSession):
        limiter = AttemptLimiter(
            fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True),
            max_attempts=2,
        )
        context = RequestContext(portal_credential="ABCD2345", ip_address="1.2.3.4")

        seen = [
            (await resolve_principal(db_session, context, limiter=limiter)).portal_credential
            for _ in range(3)
        ]

        assert seen == ["ABCD2345", "ABCD2345", None]

    @pytest.mark.asyncio
    async def test_full_token_is_not_counted(self, db_session: AsyncSession):
        limiter = AttemptLimiter(
            fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True),
            max_attempts=1,
        )
        context = RequestContext(portal_credential="cd" * 32, ip_address="1.2.3.4")

        for _ in range(3):
            principal = await resolve_principal(db_session, context, limiter=limiter)
            assert principal.portal_credential == "cd" * 32

    @pytest.mark.asyncio
    async def test_shared_limiter_applies_by_default(
        self, db_session: AsyncSession, short_code_limiter
    ):
        context = RequestContext(portal_credential="ABCD2345", ip_address="5.6.7.8")

        for _ in range(short_code_limiter.max_attempts):
            await resolve_principal(db_session, context)

        principal = await resolve_principal(db_session, context)
        assert principal.is_anonymous
        assert principal.portal_credential is None
