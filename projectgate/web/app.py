"""FastAPI application for ProjectGate."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from projectgate import __version__
from projectgate.core.logging import bind_request, configure_logging
from projectgate.db.connection import close_db
from projectgate.web.routes import health, portal, resources

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Per-request log context, request id echo and one completion line.

    ``get_principal`` leaves the resolved caller on ``request.state``; the
    completion line reports it so every request is attributable even when
    the handler itself logs nothing.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        bind_request(
            request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", principal=_actor(request))
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            principal=_actor(request),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _actor(request: Request) -> str | None:
    principal = getattr(request.state, "principal", None)
    return principal.actor_label if principal is not None else None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await close_db()


def create_app(metrics: bool = True) -> FastAPI:
    configure_logging()

    app = FastAPI(
        lifespan=_lifespan,
        title="ProjectGate",
        description="Project-scoped authorization, portal tokens and audit trail",
        version=__version__,
    )
    app.add_middleware(RequestContextMiddleware)

    if metrics:
        Instrumentator().instrument(app).expose(app)

    app.include_router(health.router)
    app.include_router(portal.router)
    app.include_router(resources.router)

    return app
