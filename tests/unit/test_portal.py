"""Tests for the portal token lifecycle and the auto-renewal sweep."""

from __future__ import annotations

from datetime import datetime, timedelta

import fakeredis
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import PortalAccessLogModel, PortalTokenModel
from projectgate.models import Principal, TokenClass
from projectgate.portal.lookup import SHORT_CODE_ALPHABET, find_token, is_live
from projectgate.portal.rate_limit import AttemptLimiter
from projectgate.portal.renewal import renew_expiring_tokens
from projectgate.portal.tokens import (
    extend_portal_token,
    issue_portal_token,
    revoke_portal_token,
    validate_portal_token,
)

NOW = datetime(2026, 3, 1, 9, 0, 0)


async def _access_logs(session: AsyncSession, token_id) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(PortalAccessLogModel)
        .where(PortalAccessLogModel.token_id == token_id)
    )


class TestIssue:
    @pytest.mark.asyncio
    async def test_contractor_defaults(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session,
            world.as_owner,
            world.project_a.id,
            TokenClass.CONTRACTOR,
            holder_email="  Sparky@Contractor.IE ",
            now=NOW,
        )

        assert token is not None
        assert len(token.token) == 64
        int(token.token, 16)
        assert len(token.short_code) == 8
        assert set(token.short_code) <= set(SHORT_CODE_ALPHABET)
        assert token.expires_at == NOW + timedelta(days=7)
        assert token.auto_renew is True
        assert token.holder_email == "sparky@contractor.ie"
        assert token.created_by == world.owner.id

    @pytest.mark.asyncio
    async def test_client_defaults(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session,
            world.as_member,
            world.project_a.id,
            TokenClass.CLIENT,
            document_tabs=["drawings"],
            contractor_type="main_contractor",
            now=NOW,
        )

        assert token.expires_at == NOW + timedelta(hours=168)
        assert token.auto_renew is False
        assert token.contractor_type is None
        assert token.document_tabs == ["drawings"]

    @pytest.mark.asyncio
    async def test_explicit_lifetime(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session,
            Principal.service(),
            world.project_a.id,
            TokenClass.CONTRACTOR,
            expires_in=timedelta(days=2),
            auto_renew=False,
            now=NOW,
        )

        assert token.expires_at == NOW + timedelta(days=2)
        assert token.auto_renew is False

    @pytest.mark.asyncio
    async def test_outsider_denied_silently(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_outsider, world.project_a.id, TokenClass.CONTRACTOR
        )

        assert token is None
        assert await db_session.scalar(select(func.count()).select_from(PortalTokenModel)) == 0

    @pytest.mark.asyncio
    async def test_admin_may_issue_without_membership(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_admin, world.project_b.id, TokenClass.CLIENT
        )

        assert token is not None


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_token_records_access(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        result = await validate_portal_token(
            db_session,
            token.token,
            ip_address="10.1.1.1",
            user_agent="pytest",
            now=NOW + timedelta(hours=1),
        )

        assert result.is_valid
        assert result.token_id == token.id
        assert result.project_id == world.project_a.id
        assert result.token_class == TokenClass.CONTRACTOR
        await db_session.refresh(token)
        assert token.access_count == 1
        assert token.last_accessed_at == NOW + timedelta(hours=1)
        assert await _access_logs(db_session, token.id) == 1

    @pytest.mark.asyncio
    async def test_short_code_is_case_insensitive(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CLIENT, now=NOW
        )

        result = await validate_portal_token(
            db_session,
            token.short_code.lower(),
            now=NOW,
        )

        assert result.is_valid
        assert result.token_id == token.id

    @pytest.mark.asyncio
    async def test_counter_increments_per_access(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        for _ in range(3):
            await validate_portal_token(db_session, token.token, now=NOW)

        await db_session.refresh(token)
        assert token.access_count == 3
        assert await _access_logs(db_session, token.id) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [None, "", "   "])
    async def test_missing_credential(self, db_session: AsyncSession, credential):
        result = await validate_portal_token(db_session, credential)

        assert result.is_valid is False
        assert result.reason == "missing"

    @pytest.mark.asyncio
    async def test_unknown_credential(self, db_session: AsyncSession, world):
        result = await validate_portal_token(db_session, "f" * 64)

        assert result.is_valid is False
        assert result.reason == "not_found"

    @pytest.mark.asyncio
    async def test_expired_token_has_no_side_effects(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        result = await validate_portal_token(
            db_session, token.token, now=token.expires_at + timedelta(seconds=1)
        )

        assert result.is_valid is False
        assert result.reason == "expired"
        assert token.access_count == 0
        assert await _access_logs(db_session, token.id) == 0

    @pytest.mark.asyncio
    async def test_expiry_boundary_is_exclusive(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        assert is_live(token, token.expires_at - timedelta(seconds=1))
        assert not is_live(token, token.expires_at)

    @pytest.mark.asyncio
    async def test_revoked_token_is_inactive(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )
        await revoke_portal_token(db_session, world.as_owner, token.id)

        result = await validate_portal_token(db_session, token.token, now=NOW)

        assert result.is_valid is False
        assert result.reason == "inactive"

    @pytest.mark.asyncio
    async def test_short_code_guessing_is_throttled(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )
        limiter = AttemptLimiter(
            fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True),
            max_attempts=2,
            window_seconds=60,
        )

        first = await validate_portal_token(
            db_session, "ZZZZZZZZ", ip_address="10.9.9.9", now=NOW, limiter=limiter
        )
        second = await validate_portal_token(
            db_session, "YYYYYYYY", ip_address="10.9.9.9", now=NOW, limiter=limiter
        )
        third = await validate_portal_token(
            db_session, token.short_code, ip_address="10.9.9.9", now=NOW, limiter=limiter
        )
        full = await validate_portal_token(
            db_session, token.token, ip_address="10.9.9.9", now=NOW, limiter=limiter
        )

        assert first.reason == "not_found"
        assert second.reason == "not_found"
        assert third.reason == "rate_limited"
        assert full.is_valid


class TestRevokeAndExtend:
    @pytest.mark.asyncio
    async def test_outsider_cannot_revoke(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        assert await revoke_portal_token(db_session, world.as_outsider, token.id) is False
        assert token.is_active is True

    @pytest.mark.asyncio
    async def test_extend_from_current_expiry(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )
        original = token.expires_at

        extended = await extend_portal_token(db_session, world.as_owner, token.id, now=NOW)

        assert extended.expires_at == original + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_extend_lapsed_token_from_now(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )
        later = NOW + timedelta(days=20)

        extended = await extend_portal_token(
            db_session, world.as_member, token.id, days=5, now=later
        )

        assert extended.expires_at == later + timedelta(days=5)
        assert is_live(extended, later)

    @pytest.mark.asyncio
    async def test_extend_denied_for_anonymous(self, db_session: AsyncSession, world):
        token = await issue_portal_token(
            db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
        )

        # A portal holder cannot extend its own link
        holder = Principal.anonymous(portal_credential=token.token)

        assert await extend_portal_token(db_session, holder, token.id) is None


class TestRenewal:
    async def _token(self, session, world, expires_in: timedelta, **kwargs) -> PortalTokenModel:
        return await issue_portal_token(
            session,
            Principal.service(),
            world.project_a.id,
            kwargs.pop("token_class", TokenClass.CONTRACTOR),
            expires_in=expires_in,
            now=NOW,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_renews_tokens_inside_lead_window(self, db_session: AsyncSession, world):
        due = await self._token(db_session, world, timedelta(days=3))
        original = due.expires_at

        report = await renew_expiring_tokens(db_session, now=NOW)

        assert report.renewed_token_ids == [due.id]
        assert due.expires_at == original + timedelta(days=30)
        assert due.renewal_count == 1
        assert due.last_renewed_at == NOW

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, db_session: AsyncSession, world):
        due = await self._token(db_session, world, timedelta(days=3))

        await renew_expiring_tokens(db_session, now=NOW)
        expiry_after_first = due.expires_at
        second = await renew_expiring_tokens(db_session, now=NOW)

        assert second.renewed == 0
        assert due.expires_at == expiry_after_first
        assert due.renewal_count == 1

    @pytest.mark.asyncio
    async def test_skips_ineligible_tokens(self, db_session: AsyncSession, world):
        far = await self._token(db_session, world, timedelta(days=10))
        no_renew = await self._token(db_session, world, timedelta(days=2), auto_renew=False)
        client = await self._token(
            db_session, world, timedelta(days=2), token_class=TokenClass.CLIENT
        )
        revoked = await self._token(db_session, world, timedelta(days=2))
        revoked.is_active = False
        lapsed = await self._token(db_session, world, timedelta(hours=1))
        await db_session.flush()

        report = await renew_expiring_tokens(db_session, now=NOW + timedelta(hours=2))

        assert report.renewed == 0
        for token in (far, no_renew, client, revoked, lapsed):
            assert token.renewal_count == 0

    @pytest.mark.asyncio
    async def test_lead_window_upper_bound_inclusive(self, db_session: AsyncSession, world):
        edge = await self._token(db_session, world, timedelta(days=7))

        report = await renew_expiring_tokens(db_session, now=NOW)

        assert report.renewed_token_ids == [edge.id]


@pytest.mark.asyncio
async def test_find_token_by_secret_and_code(db_session: AsyncSession, world):
    token = await issue_portal_token(
        db_session, world.as_owner, world.project_a.id, TokenClass.CONTRACTOR, now=NOW
    )

    assert (await find_token(db_session, token.token)).id == token.id
    assert (await find_token(db_session, f" {token.short_code.lower()} ")).id == token.id
    assert await find_token(db_session, None) is None
