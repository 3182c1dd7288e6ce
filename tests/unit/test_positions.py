"""Tests for single-holder project positions."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import ProjectMemberModel
from projectgate.errors import InvariantViolation, PositionConflictError
from projectgate.identity import register_user
from projectgate.mutations import positions
from projectgate.mutations.positions import check_position_available
from projectgate.mutations.writer import EntityWriter


async def _membership(session: AsyncSession, user_id) -> ProjectMemberModel:
    return await session.scalar(
        select(ProjectMemberModel).where(ProjectMemberModel.user_id == user_id)
    )


class TestWriterPositions:
    @pytest.mark.asyncio
    async def test_second_primary_is_rejected(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        engineer = await register_user(db_session, "engineer@example.com")
        other = await register_user(db_session, "other@example.com")

        first = await writer.create(
            db_session,
            world.as_owner,
            "project_members",
            {"project_id": world.project_a.id, "user_id": engineer.id, "position": "primary"},
        )
        assert first is not None

        with pytest.raises(PositionConflictError) as exc_info:
            await writer.create(
                db_session,
                world.as_owner,
                "project_members",
                {"project_id": world.project_a.id, "user_id": other.id, "position": "primary"},
            )

        assert exc_info.value.position == "primary"
        assert isinstance(exc_info.value, InvariantViolation)

    @pytest.mark.asyncio
    async def test_non_exclusive_positions_can_repeat(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        a = await register_user(db_session, "a@example.com")
        b = await register_user(db_session, "b@example.com")

        for user in (a, b):
            row = await writer.create(
                db_session,
                world.as_owner,
                "project_members",
                {"project_id": world.project_a.id, "user_id": user.id, "position": "oversight"},
            )
            assert row is not None

    @pytest.mark.asyncio
    async def test_update_into_taken_position(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        owner_row = await _membership(db_session, world.owner.id)
        member_row = await _membership(db_session, world.member.id)
        await writer.update(
            db_session, world.as_owner, "project_members", owner_row.id, {"position": "secondary"}
        )

        with pytest.raises(PositionConflictError):
            await writer.update(
                db_session,
                world.as_owner,
                "project_members",
                member_row.id,
                {"position": "secondary"},
            )

    @pytest.mark.asyncio
    async def test_holder_can_resave_own_position(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        owner_row = await _membership(db_session, world.owner.id)
        await writer.update(
            db_session, world.as_owner, "project_members", owner_row.id, {"position": "primary"}
        )

        again = await writer.update(
            db_session,
            world.as_owner,
            "project_members",
            owner_row.id,
            {"position": "primary", "role": "owner"},
        )

        assert again is not None

    @pytest.mark.asyncio
    async def test_positions_are_per_project(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        owner_row = await _membership(db_session, world.owner.id)
        outsider_row = await _membership(db_session, world.outsider.id)

        await writer.update(
            db_session, world.as_owner, "project_members", owner_row.id, {"position": "primary"}
        )
        other = await writer.update(
            db_session,
            world.as_outsider,
            "project_members",
            outsider_row.id,
            {"position": "primary"},
        )

        assert other is not None

    @pytest.mark.asyncio
    async def test_member_cannot_assign_positions(self, db_session: AsyncSession, world):
        writer = EntityWriter()
        member_row = await _membership(db_session, world.member.id)

        result = await writer.update(
            db_session, world.as_member, "project_members", member_row.id, {"position": "primary"}
        )

        assert result is None


class TestDatabaseGuard:
    @pytest.mark.asyncio
    async def test_unique_index_catches_lost_race(
        self, db_session: AsyncSession, world, monkeypatch
    ):
        writer = EntityWriter()
        owner_row = await _membership(db_session, world.owner.id)
        member_row = await _membership(db_session, world.member.id)
        await writer.update(
            db_session, world.as_owner, "project_members", owner_row.id, {"position": "primary"}
        )

        # A concurrent writer whose pre-check ran before the first commit
        async def stale_check(*args, **kwargs):
            return None

        monkeypatch.setattr(positions, "check_position_available", stale_check)

        with pytest.raises(PositionConflictError) as exc_info:
            await writer.update(
                db_session,
                world.as_owner,
                "project_members",
                member_row.id,
                {"position": "primary"},
            )

        assert exc_info.value.project_id == world.project_a.id

    @pytest.mark.asyncio
    async def test_check_position_available(self, db_session: AsyncSession, world):
        owner_row = await _membership(db_session, world.owner.id)
        owner_row.position = "secondary"
        await db_session.flush()

        await check_position_available(db_session, world.project_a.id, "secondary", owner_row.id)
        await check_position_available(db_session, world.project_a.id, "admin")
        with pytest.raises(PositionConflictError):
            await check_position_available(db_session, world.project_a.id, "secondary")
