"""FastAPI application factory for the Stargate gateway."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .dependencies import close_services, init_services, start_services
from .errors import StargateError
from .logging import get_logger
from .middleware import RequestLoggingMiddleware
from .responses import stargate_error_handler
from .routes import forward_auth, login, oidc, session, step_up, system, totp

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):  # pragma: no cover - exercised via integration tests
    """Initialise and tear down shared application resources."""

    init_services(settings)
    await start_services()
    logger.info(
        "stargate_started",
        auth_host=settings.auth_host,
        warden=settings.warden.enabled,
        herald=settings.herald.enabled,
        oidc=settings.oidc.enabled,
    )
    try:
        yield
    finally:
        await close_services()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""

    app = FastAPI(
        title="Stargate",
        version="1.0",
        lifespan=_lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(StargateError, stargate_error_handler)

    app.include_router(forward_auth.router)
    app.include_router(login.router)
    app.include_router(session.router)
    app.include_router(oidc.router)
    app.include_router(step_up.router)
    app.include_router(totp.router)
    app.include_router(system.router)

    return app


app = create_app()
