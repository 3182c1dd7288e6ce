"""Liveness and dependency checks.

The database is required: without it nothing can be authorized, so the
check answers 503. Redis only backs short-code attempt windows; while it is
down short codes are refused but full tokens and accounts keep working, so
the service reports itself ``degraded`` rather than down.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate import __version__
from projectgate.db.connection import get_db
from projectgate.portal.rate_limit import AttemptLimiter, get_short_code_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check: database unreachable: %s", e)
        return False
    return True


async def _attempt_store_ok(limiter: AttemptLimiter) -> bool:
    try:
        await limiter.client.ping()
    except RedisError as e:
        logger.warning("Health check: short-code attempt store unreachable: %s", e)
        return False
    return True


@router.get("")
async def health_check(
    db: AsyncSession = Depends(get_db),
    limiter: AttemptLimiter = Depends(get_short_code_limiter),
):
    database = await _database_ok(db)
    attempt_store = await _attempt_store_ok(limiter)

    if not database:
        state = "error"
    elif not attempt_store:
        state = "degraded"
    else:
        state = "ok"
    body = {
        "status": state,
        "version": __version__,
        "database": "connected" if database else "disconnected",
        "attempt_store": "connected" if attempt_store else "disconnected",
    }
    code = status.HTTP_200_OK if database else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(body, status_code=code)
