"""Router modules for FastAPI web API."""

from web.routers import builds, config, health, robots, webhook

__all__ = ["builds", "config", "health", "robots", "webhook"]
