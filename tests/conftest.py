"""Pytest configuration and fixtures for ProjectGate tests.

Provides an in-memory database and a small standard world:

- ``admin``: first account, seeded admin, not a member of anything
- ``owner``: creator and owner of project A
- ``member``: plain member of project A
- ``outsider``: creator and owner of project B only
"""

from __future__ import annotations

from dataclasses import dataclass

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from projectgate.config import reset_config
from projectgate.db.connection import configure_sqlite
from projectgate.db.models import Base, ProjectMemberModel, ProjectModel, UserModel
from projectgate.identity import register_user
from projectgate.models import GlobalRole, MembershipRole, Principal
from projectgate.portal import rate_limit


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("PROJECTGATE_SERVICE_KEY", raising=False)
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    reset_config()
    rate_limit._limiter = None
    yield
    reset_config()
    rate_limit._limiter = None


@pytest.fixture(autouse=True)
def short_code_limiter(setup_test_env) -> rate_limit.AttemptLimiter:
    """Shared short-code limiter backed by a private in-memory Redis."""
    limiter = rate_limit.AttemptLimiter(fake_redis(), max_attempts=10, window_seconds=60)
    rate_limit._limiter = limiter
    return limiter


def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    configure_sqlite(engine.sync_engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(db_engine) -> AsyncSession:
    SessionLocal = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        await session.close()


@dataclass
class World:
    admin: UserModel
    owner: UserModel
    member: UserModel
    outsider: UserModel
    project_a: ProjectModel
    project_b: ProjectModel

    @property
    def as_admin(self) -> Principal:
        return Principal.user(self.admin.id, GlobalRole.ADMIN)

    @property
    def as_owner(self) -> Principal:
        return Principal.user(self.owner.id)

    @property
    def as_member(self) -> Principal:
        return Principal.user(self.member.id)

    @property
    def as_outsider(self) -> Principal:
        return Principal.user(self.outsider.id)


@pytest_asyncio.fixture()
async def world(db_session: AsyncSession) -> World:
    admin = await register_user(db_session, "admin@example.com", confirmed=True)
    owner = await register_user(db_session, "owner@example.com", confirmed=True)
    member = await register_user(db_session, "member@example.com", confirmed=True)
    outsider = await register_user(db_session, "outsider@example.com", confirmed=True)

    project_a = ProjectModel(name="Mall Phase 1", created_by=owner.id)
    project_b = ProjectModel(name="Office Tower", created_by=outsider.id)
    db_session.add_all([project_a, project_b])
    await db_session.flush()

    db_session.add_all(
        [
            ProjectMemberModel(
                project_id=project_a.id, user_id=owner.id, role=MembershipRole.OWNER.value
            ),
            ProjectMemberModel(
                project_id=project_a.id, user_id=member.id, role=MembershipRole.MEMBER.value
            ),
            ProjectMemberModel(
                project_id=project_b.id, user_id=outsider.id, role=MembershipRole.OWNER.value
            ),
        ]
    )
    await db_session.flush()

    return World(admin, owner, member, outsider, project_a, project_b)
