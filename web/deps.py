"""Service dependencies for FastAPI.

The lifespan in web.app wires the long-lived services into app.state;
these helpers hand them to route handlers via dependency injection.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from ci_server.authentication import Authenticator
from ci_server.builds.service import BuildService
from ci_server.builds.storage import BuildStorage
from ci_server.config import Settings


def get_settings_dep(request: Request) -> Settings:
    """Get the settings the application was created with."""
    settings: Settings = request.app.state.settings
    return settings


def get_storage(request: Request) -> BuildStorage:
    """Get the build record store."""
    storage: BuildStorage = request.app.state.storage
    return storage


def get_service(request: Request) -> BuildService:
    """Get the build service."""
    service: BuildService = request.app.state.build_service
    return service


def get_authenticator(request: Request) -> Authenticator:
    """Get the webhook authenticator."""
    authenticator: Authenticator = request.app.state.authenticator
    return authenticator


# Type aliases for dependencies
AppSettings = Annotated[Settings, Depends(get_settings_dep)]
Storage = Annotated[BuildStorage, Depends(get_storage)]
Service = Annotated[BuildService, Depends(get_service)]
WebhookAuthenticator = Annotated[Authenticator, Depends(get_authenticator)]
