"""
FastAPI application for tollgate.

Serves token management and the audit view, and carries the Gatekeeper
on app.state so host routes can use `Depends(gate(...))`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tollgate import __version__
from tollgate.auth.audit import AuditLogger
from tollgate.auth.capabilities import CapabilityResolver, InMemoryPrincipalDirectory, PrincipalDirectory
from tollgate.auth.gatekeeper import Gatekeeper
from tollgate.auth.rate_limit import RateLimiter
from tollgate.auth.routes import router as tokens_router
from tollgate.auth.tokens import TokenService
from tollgate.config import Settings, get_settings
from tollgate.config_loader import load_resolver
from tollgate.core.logging import configure_logging
from tollgate.integrations.sentry import init_sentry
from tollgate.services.housekeeping import Housekeeper
from tollgate.storage import StorageProvider, create_local_storage

logger = logging.getLogger(__name__)


# =============================================================================
# App Setup
# =============================================================================


def create_app(
    settings: Settings | None = None,
    storage: StorageProvider | None = None,
    directory: PrincipalDirectory | None = None,
    resolver: CapabilityResolver | None = None,
    configure_logs: bool = True,
) -> FastAPI:
    """
    Build the application and its gatekeeper.

    Components are wired here rather than in the lifespan so tests can
    reach app.state.gatekeeper before the first request.
    """
    settings = settings or get_settings()
    storage = storage or create_local_storage()
    directory = directory or InMemoryPrincipalDirectory()
    resolver = resolver or load_resolver(settings=settings)

    tokens = TokenService(storage.tokens, directory, settings)
    rate_limiter = RateLimiter(settings)
    audit = AuditLogger(storage.audit, settings)
    gatekeeper = Gatekeeper(tokens, resolver, directory, rate_limiter, audit, settings)
    housekeeper = Housekeeper(tokens, audit, rate_limiter, resolver, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start and stop background work."""
        if configure_logs:
            configure_logging(settings.log_level, settings.log_format)
        if init_sentry(settings):
            logger.info("Sentry error tracking enabled")

        housekeeper.start()
        logger.info("Tollgate API starting in %s mode", settings.environment)

        yield

        await housekeeper.stop()
        logger.info("Tollgate API shutting down")

    app = FastAPI(
        title="Tollgate API",
        description="Personal access tokens, capability checks, rate limits and audit",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.directory = directory
    app.state.gatekeeper = gatekeeper
    app.state.housekeeper = housekeeper

    # CORS
    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(tokens_router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": __version__,
        }

    return app
