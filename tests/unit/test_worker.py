"""Tests for the arq worker jobs."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from projectgate.core.timeutil import utcnow
from projectgate.db.models import PortalTokenModel, ProjectModel
from projectgate.models import Principal, TokenClass
from projectgate.portal.tokens import issue_portal_token


@pytest.mark.asyncio
async def test_renew_portal_tokens_job(db_engine):
    from projectgate.worker import renew_portal_tokens

    session_maker = async_sessionmaker(db_engine, expire_on_commit=False)
    async with session_maker() as session:
        project = ProjectModel(name="Mall extension")
        session.add(project)
        await session.flush()
        due = await issue_portal_token(
            session,
            Principal.service(),
            project.id,
            TokenClass.CONTRACTOR,
            expires_in=timedelta(days=2),
        )
        later = await issue_portal_token(
            session,
            Principal.service(),
            project.id,
            TokenClass.CONTRACTOR,
            expires_in=timedelta(days=20),
        )
        due_id, due_expiry, later_id = due.id, due.expires_at, later.id
        await session.commit()

    result = await renew_portal_tokens({"session_maker": session_maker})

    assert result["renewed"] == 1
    assert result["token_ids"] == [str(due_id)]
    async with session_maker() as session:
        renewed = await session.get(PortalTokenModel, due_id)
        untouched = await session.get(PortalTokenModel, later_id)
        assert renewed.expires_at == due_expiry + timedelta(days=30)
        assert renewed.renewal_count == 1
        assert untouched.renewal_count == 0

    again = await renew_portal_tokens({"session_maker": session_maker})
    assert again["renewed"] == 0


@pytest.mark.asyncio
async def test_renew_job_ignores_lapsed_tokens(db_engine):
    from projectgate.worker import renew_portal_tokens

    session_maker = async_sessionmaker(db_engine, expire_on_commit=False)
    async with session_maker() as session:
        project = ProjectModel(name="Clinic")
        session.add(project)
        await session.flush()
        await issue_portal_token(
            session,
            Principal.service(),
            project.id,
            TokenClass.CONTRACTOR,
            expires_at=utcnow() - timedelta(hours=1),
        )
        await session.commit()

    result = await renew_portal_tokens({"session_maker": session_maker})

    assert result["renewed"] == 0
    async with session_maker() as session:
        tokens = (await session.execute(select(PortalTokenModel))).scalars().all()
        assert [t.renewal_count for t in tokens] == [0]


def test_worker_settings_schedule_renewal():
    from projectgate.worker import WorkerSettings, renew_portal_tokens

    assert renew_portal_tokens in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1
