"""Portal token lifecycle: issue, validate, revoke, extend.

A token is a 64-character hex secret plus an 8-character short code that
resolves to the same row. Validation never raises; every failure comes back
as ``PortalValidation(is_valid=False, reason=...)``.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.config import get_config
from projectgate.core.timeutil import as_naive_utc, utcnow
from projectgate.db.models import PortalAccessLogModel, PortalTokenModel
from projectgate.models import Principal, PortalValidation, TokenClass
from projectgate.portal.lookup import (
    SHORT_CODE_ALPHABET,
    find_token,
    is_live,
)
from projectgate.portal.rate_limit import AttemptLimiter, admit_credential

logger = logging.getLogger(__name__)


def generate_token(nbytes: int | None = None) -> str:
    return secrets.token_hex(nbytes or get_config().portal.token_bytes)


async def generate_short_code(session: AsyncSession, length: int | None = None) -> str:
    """Draw short codes until one is not already taken."""
    length = length or get_config().portal.short_code_length
    while True:
        code = "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))
        taken = await session.scalar(
            select(PortalTokenModel.id).where(PortalTokenModel.short_code == code)
        )
        if taken is None:
            return code


def default_expiry(token_class: TokenClass, now: datetime) -> datetime:
    portal = get_config().portal
    if token_class == TokenClass.CONTRACTOR:
        return now + timedelta(days=portal.contractor_expiry_days)
    return now + timedelta(hours=portal.client_expiry_hours)


async def issue_portal_token(
    session: AsyncSession,
    principal: Principal,
    project_id: UUID,
    token_class: TokenClass,
    *,
    expires_at: datetime | None = None,
    expires_in: timedelta | None = None,
    holder_name: str | None = None,
    holder_email: str | None = None,
    contractor_type: str | None = None,
    document_tabs: list[str] | None = None,
    auto_renew: bool | None = None,
    now: datetime | None = None,
) -> PortalTokenModel | None:
    """Create a token for ``project_id``.

    Only principals with project access (or the service principal) may issue
    tokens. Denial is silent: returns None.

    Contractor tokens auto-renew unless told otherwise; client tokens don't.
    """
    from projectgate.authz.predicates import has_project_access

    if not principal.is_service and not await has_project_access(session, principal, project_id):
        logger.info("Token issue for project %s denied to %s", project_id, principal.actor_label)
        return None

    token_class = TokenClass(token_class)
    now = as_naive_utc(now) if now is not None else utcnow()
    if expires_at is not None:
        expiry = as_naive_utc(expires_at)
    elif expires_in is not None:
        expiry = now + expires_in
    else:
        expiry = default_expiry(token_class, now)

    if auto_renew is None:
        auto_renew = token_class == TokenClass.CONTRACTOR

    token = PortalTokenModel(
        project_id=project_id,
        token_class=token_class.value,
        token=generate_token(),
        short_code=await generate_short_code(session),
        holder_name=holder_name,
        holder_email=holder_email.strip().lower() if holder_email else None,
        contractor_type=contractor_type if token_class == TokenClass.CONTRACTOR else None,
        document_tabs=list(document_tabs or []),
        expires_at=expiry,
        is_active=True,
        auto_renew=auto_renew,
        created_by=principal.user_id,
        created_at=now,
    )
    session.add(token)
    await session.flush()

    logger.info(
        "Issued %s portal token %s for project %s (expires %s)",
        token_class.value,
        token.id,
        project_id,
        expiry.isoformat(),
    )
    return token


async def validate_portal_token(
    session: AsyncSession,
    credential: str | None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
    limiter: AttemptLimiter | None = None,
) -> PortalValidation:
    """Validate a token or short code and record the access.

    On success the access counter is incremented in a single UPDATE and an
    access-log row is appended. Failures have no side effects.
    """
    if not credential or not credential.strip():
        return PortalValidation.invalid("missing")
    credential = credential.strip()
    now = as_naive_utc(now) if now is not None else utcnow()

    if not await admit_credential(credential, ip_address, limiter):
        return PortalValidation.invalid("rate_limited")

    token = await find_token(session, credential)
    if token is None:
        logger.info("Portal validation failed: unknown credential from %s", ip_address or "unknown")
        return PortalValidation.invalid("not_found")
    if not token.is_active:
        return PortalValidation.invalid("inactive")
    if not is_live(token, now):
        return PortalValidation.invalid("expired")

    await session.execute(
        update(PortalTokenModel)
        .where(PortalTokenModel.id == token.id)
        .values(
            access_count=PortalTokenModel.access_count + 1,
            last_accessed_at=now,
        )
    )
    session.add(
        PortalAccessLogModel(
            token_id=token.id,
            project_id=token.project_id,
            accessed_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )
    await session.flush()

    return PortalValidation(
        is_valid=True,
        token_id=token.id,
        project_id=token.project_id,
        token_class=TokenClass(token.token_class),
        expires_at=token.expires_at,
        document_tabs=list(token.document_tabs or []),
        holder_name=token.holder_name,
        holder_email=token.holder_email,
    )


async def _load_manageable(
    session: AsyncSession, principal: Principal, token_id: UUID
) -> PortalTokenModel | None:
    """Fetch a token the principal may manage (project access or service)."""
    from projectgate.authz.predicates import has_project_access

    token = await session.get(PortalTokenModel, token_id)
    if token is None:
        return None
    if principal.is_service or await has_project_access(session, principal, token.project_id):
        return token
    return None


async def revoke_portal_token(session: AsyncSession, principal: Principal, token_id: UUID) -> bool:
    token = await _load_manageable(session, principal, token_id)
    if token is None:
        return False
    token.is_active = False
    await session.flush()
    logger.info("Portal token %s revoked by %s", token_id, principal.actor_label)
    return True


async def extend_portal_token(
    session: AsyncSession,
    principal: Principal,
    token_id: UUID,
    days: int | None = None,
    now: datetime | None = None,
) -> PortalTokenModel | None:
    """Manually push a token's expiry forward (default 30 days).

    Extends from the current expiry, or from now if the token has already
    lapsed, so an extension always yields a future expiry.
    """
    token = await _load_manageable(session, principal, token_id)
    if token is None:
        return None

    days = days if days is not None else get_config().portal.renewal_extension_days
    now = as_naive_utc(now) if now is not None else utcnow()
    token.expires_at = max(token.expires_at, now) + timedelta(days=days)
    await session.flush()

    logger.info(
        "Portal token %s extended to %s by %s",
        token_id,
        token.expires_at.isoformat(),
        principal.actor_label,
    )
    return token
