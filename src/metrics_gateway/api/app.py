"""
metrics_gateway.api.app

FastAPI app factory for the metrics gateway auth front door.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Create the authenticator, force the service logon and run the cache sweeper.
- Map auth errors raised outside dependencies to HTTP responses.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from metrics_gateway import __version__
from metrics_gateway.api.routers.auth import router as auth_router
from metrics_gateway.api.routers.health import router as health_router
from metrics_gateway.auth.errors import AuthenticationError
from metrics_gateway.auth.keystone import Authenticator
from metrics_gateway.identity.client import IdentityError
from metrics_gateway.observability.logging import configure_logging, get_logger
from metrics_gateway.observability.middleware import RequestContextMiddleware
from metrics_gateway.settings import Settings

log = get_logger(__name__)


async def _sweep_caches(authenticator: Authenticator, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        authenticator.cache.sweep()


def create_app(*, settings: Settings, authenticator: Authenticator | None = None) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)
    auth = authenticator or Authenticator(settings=settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env, auth_url=settings.keystone_auth_url)
        # Blocking logon; a broken service account stops the process here.
        await run_in_threadpool(auth.start)
        sweeper = asyncio.create_task(
            _sweep_caches(auth, settings.cache_sweep_interval.total_seconds())
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            auth.close()
            log.info("shutdown")

    app = FastAPI(
        title="Metrics Gateway Auth",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.authenticator = auth

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router)

    @app.exception_handler(AuthenticationError)
    async def _auth_error(_: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            {"detail": exc.message, "kind": exc.kind.value},
            status_code=exc.kind.http_status,
        )

    @app.exception_handler(IdentityError)
    async def _identity_error(_: Request, exc: IdentityError) -> JSONResponse:
        log.error("identity_provider_error", error=str(exc))
        return JSONResponse({"detail": str(exc)}, status_code=HTTP_503_SERVICE_UNAVAILABLE)

    return app


# --- Module Notes -----------------------------------------------------------
# The authenticator is process-wide: one service session, one registry and one
# set of caches shared by every request worker.
