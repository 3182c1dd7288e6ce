"""Read-only portal token lookup shared by the validator and the predicates."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.core.timeutil import as_naive_utc, utcnow
from projectgate.db.models import PortalTokenModel

SHORT_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def looks_like_short_code(credential: str, length: int = 8) -> bool:
    return len(credential) == length and credential.isalnum()


async def find_token(session: AsyncSession, credential: str | None) -> PortalTokenModel | None:
    """Find a token by its secret, then by short code (case-insensitive)."""
    if not credential:
        return None
    credential = credential.strip()
    if not credential:
        return None

    token = await session.scalar(
        select(PortalTokenModel).where(PortalTokenModel.token == credential)
    )
    if token is not None:
        return token

    return await session.scalar(
        select(PortalTokenModel).where(PortalTokenModel.short_code == credential.upper())
    )


def is_live(token: PortalTokenModel, now: datetime | None = None) -> bool:
    """A token is valid iff it is active and has not reached its expiry."""
    now = as_naive_utc(now) if now is not None else utcnow()
    return bool(token.is_active) and token.expires_at > now
