"""PairBridge FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pairbridge import __version__
from pairbridge.adapters.shared import FileSessionStore, PairingConfig, PairingService
from pairbridge.api.dependencies import load_client_factory
from pairbridge.api.middleware import RequestLoggingMiddleware
from pairbridge.api.routes import health, pair
from pairbridge.config.settings import Settings, settings as default_settings
from pairbridge.exception_handlers import UncaughtErrorFilter, register_exception_handlers
from pairbridge.logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> PairingService | None:
    """Create the pairing service, or None when no client factory is configured."""
    factory = load_client_factory(settings.CLIENT_FACTORY)
    if factory is None:
        logger.warning("CLIENT_FACTORY is not set; pairing requests will be rejected")
        return None
    return PairingService(
        FileSessionStore(settings.SESSION_ROOT),
        factory,
        PairingConfig.from_settings(settings),
    )


def create_app(
    service: PairingService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        service: Pre-built pairing service. Built from settings at startup
            when not provided.
        settings: Settings to use instead of the process-wide instance.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        UncaughtErrorFilter().install()
        if app.state.pairing_service is None:
            app.state.pairing_service = build_service(settings)
        yield
        if app.state.pairing_service is not None:
            await app.state.pairing_service.shutdown()

    app = FastAPI(
        title="PairBridge",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    app.state.pairing_service = service

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(pair.router)
    register_exception_handlers(app)
    return app


configure_logging(default_settings.ENVIRONMENT)
app = create_app()
