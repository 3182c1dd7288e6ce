"""Scheduled auto-renewal sweep for portal tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.config import get_config
from projectgate.core.timeutil import as_naive_utc, utcnow
from projectgate.db.models import PortalTokenModel
from projectgate.models import RenewalReport

logger = logging.getLogger(__name__)


async def renew_expiring_tokens(
    session: AsyncSession,
    now: datetime | None = None,
) -> RenewalReport:
    """Extend active auto-renew tokens that expire within the lead window.

    A token qualifies when ``now < expires_at <= now + lead``. Renewed tokens
    move out of the window, so a second run at the same instant renews
    nothing. Lapsed tokens are left alone.
    """
    portal = get_config().portal
    now = as_naive_utc(now) if now is not None else utcnow()
    horizon = now + timedelta(days=portal.renewal_lead_days)
    extension = timedelta(days=portal.renewal_extension_days)

    result = await session.execute(
        select(PortalTokenModel)
        .where(
            PortalTokenModel.auto_renew.is_(True),
            PortalTokenModel.is_active.is_(True),
            PortalTokenModel.expires_at > now,
            PortalTokenModel.expires_at <= horizon,
        )
        .order_by(PortalTokenModel.expires_at)
    )
    tokens = result.scalars().all()

    report = RenewalReport(swept_at=now)
    for token in tokens:
        token.expires_at = token.expires_at + extension
        token.renewal_count = (token.renewal_count or 0) + 1
        token.last_renewed_at = now
        report.renewed_token_ids.append(token.id)

    await session.flush()

    if report.renewed:
        logger.info("Renewed %d portal token(s) at %s", report.renewed, now.isoformat())
    else:
        logger.debug("No portal tokens due for renewal at %s", now.isoformat())
    return report
