"""Build orchestration module.

This module handles:
- The serialization lock guarding the shared checkout
- Updating the checkout and applying pull request diffs
- Running commands with streamed output
- Build records and the recent builds cache
- Running the steps of a build and reporting their status
"""

from ci_server.builds.lock import BuildLock
from ci_server.builds.storage import BuildStorage

__all__ = ["BuildLock", "BuildStorage"]

# Submodules are imported lazily to avoid circular imports
# Access via ci_server.builds.service, etc.
