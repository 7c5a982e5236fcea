"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter

from ci_server.config import settings_to_dict
from web.deps import AppSettings

router = APIRouter()


@router.get("")
def get_config(settings: AppSettings) -> dict[str, Any]:
    """Get effective configuration.

    Returns:
        Current configuration as JSON, secrets masked.
    """
    return settings_to_dict(settings)
