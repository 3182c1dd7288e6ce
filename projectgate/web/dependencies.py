"""Shared dependencies for ProjectGate web routes.

Identity arrives from a trusted upstream (gateway/session layer) as headers:

- ``X-User-Id``: verified account id
- ``X-Service-Key``: shared secret marking trusted backend jobs
- ``X-Portal-Token``: portal token or short code for anonymous callers

Usage:
    @router.get("/resources/{resource}")
    async def list_rows(principal: Principal = Depends(get_principal)):
        ...
"""

from __future__ import annotations

import logging
import secrets
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.authz.engine import AuthorizationEngine, get_authorization_engine
from projectgate.config import get_config
from projectgate.core.logging import bind_principal
from projectgate.db.connection import get_db
from projectgate.identity import resolve_principal
from projectgate.models import Principal, RequestContext
from projectgate.mutations.writer import EntityWriter

logger = logging.getLogger(__name__)

_writer: EntityWriter | None = None


def _parse_user_id(raw: str | None) -> UUID | None:
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        logger.warning("Ignoring malformed X-User-Id header")
        return None


def _is_service(presented: str | None) -> bool:
    expected = get_config().service_key
    if not expected or not presented:
        return False
    return secrets.compare_digest(presented, expected)


def get_request_context(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_service_key: str | None = Header(default=None),
    x_portal_token: str | None = Header(default=None),
) -> RequestContext:
    return RequestContext(
        user_id=_parse_user_id(x_user_id),
        is_service=_is_service(x_service_key),
        portal_credential=x_portal_token,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def get_principal(
    request: Request,
    context: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the caller fresh for every request (never cached).

    ``resolve_principal`` counts short codes against the client ip; a
    throttled caller comes back anonymous without a credential.
    """
    principal = await resolve_principal(session, context)
    bind_principal(principal.kind.value, principal.actor_label)
    request.state.principal = principal
    return principal


def get_authz_engine() -> AuthorizationEngine:
    return get_authorization_engine()


def get_entity_writer(engine: AuthorizationEngine = Depends(get_authz_engine)) -> EntityWriter:
    global _writer
    if _writer is None or _writer.engine is not engine:
        _writer = EntityWriter(engine)
    return _writer
