"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and the
build services wired into app.state.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from ci_server import __version__
from ci_server.authentication import Authenticator
from ci_server.builds.lock import BuildLock
from ci_server.builds.repository import Repository
from ci_server.builds.service import BuildService
from ci_server.builds.storage import BuildStorage
from ci_server.config import Settings, get_settings
from ci_server.status import StatusReporter
from ci_server.steps import resolve_steps
from web.routers import builds, config, health, robots, webhook

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Creates the build services on startup and loads the recent builds.
    """
    settings: Settings = app.state.settings
    steps = resolve_steps(settings.steps)

    storage = BuildStorage(settings.storage_path)
    await storage.load_latest_builds()

    async with httpx.AsyncClient() as client:
        repository = Repository(
            settings.checkout_dir,
            timeout=settings.command_timeout,
            diff_timeout=settings.diff_timeout,
            client=client,
        )
        reporter = StatusReporter(
            settings.endpoint,
            settings.oauth_token.get_secret_value(),
            timeout=settings.status_timeout,
            client=client,
        )
        app.state.storage = storage
        app.state.authenticator = Authenticator(settings.secret.get_secret_value())
        app.state.build_service = BuildService(
            settings,
            repository=repository,
            reporter=reporter,
            steps=steps,
            lock=BuildLock(),
        )
        logger.info(
            "Serving builds of %s with steps: %s",
            settings.checkout_dir,
            ", ".join(settings.steps),
        )
        yield


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment if omitted.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="CI Server",
        description="Verifies pull requests against a shared checkout and "
        "reports per-step statuses",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.settings = settings or get_settings()

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(robots.router, tags=["robots"])
    application.include_router(webhook.router, tags=["webhook"])
    application.include_router(builds.router, prefix="/build", tags=["builds"])

    return application
