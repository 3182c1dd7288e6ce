"""Background worker (arq) for scheduled maintenance.

Run with:
    arq projectgate.worker.WorkerSettings
"""

from __future__ import annotations

import logging
from typing import Any

from arq.connections import RedisSettings
from arq.cron import cron

from projectgate.config import get_config
from projectgate.core.logging import configure_logging
from projectgate.db.connection import close_db, get_session_factory
from projectgate.portal.renewal import renew_expiring_tokens

logger = logging.getLogger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    configure_logging()
    ctx["session_maker"] = get_session_factory()
    logger.info("Worker started. Database connection initialized.")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    await close_db()
    logger.info("Worker stopped. Database connection closed.")


async def renew_portal_tokens(ctx: dict[str, Any]) -> dict[str, Any]:
    """Periodic portal auto-renewal sweep.

    Runs outside the request path. Safe to run more than once: renewed tokens
    leave the lead window, so a repeat run finds nothing to do.
    """
    session_maker = ctx["session_maker"]
    async with session_maker() as session:
        try:
            report = await renew_expiring_tokens(session)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Portal token renewal sweep failed")
            raise

    logger.info("Portal renewal sweep renewed %d token(s)", report.renewed)
    return {
        "swept_at": report.swept_at.isoformat(),
        "renewed": report.renewed,
        "token_ids": [str(token_id) for token_id in report.renewed_token_ids],
    }


_config = get_config()
_worker_config = _config.worker


class WorkerSettings:
    functions = [renew_portal_tokens]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_config.redis_url)
    cron_jobs = [
        cron(
            renew_portal_tokens,
            hour=_worker_config.renewal_cron_hour,
            minute=_worker_config.renewal_cron_minute,
            run_at_startup=False,
        )
    ]
