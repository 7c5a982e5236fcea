"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter

from ci_server import __version__
from web.deps import Service

router = APIRouter()


@router.get("/health")
def health(service: Service) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Health status with version and build lock state.
    """
    return {
        "status": "ok",
        "version": __version__,
        "building": service.lock.locked,
        "queued": service.lock.waiting,
    }
