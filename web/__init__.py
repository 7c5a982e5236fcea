"""FastAPI web application for the CI server.

This module provides the HTTP surface: the GitHub webhook, the build log
pages and a few operational endpoints.

All build logic is delegated to core modules in ci_server/.
"""

from web.app import create_app

__all__ = ["create_app"]
