"""Base class for build steps.

A step is one independently reported unit of verification. The build
service creates a fresh instance for every build, calls run(), and
reports the step's own success flag and status string afterwards. A
step that raises is reported as an error with a generic message.

Steps run concurrently against the same checkout and must not modify it.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Protocol

if TYPE_CHECKING:
    from ci_server.config import Settings


class StepExecutionError(Exception):
    """Raised when a step cannot complete its verification."""

    def __init__(self, message: str, code: str = "step_error") -> None:
        super().__init__(message)
        self.code = code


class StepHost(Protocol):
    """What a step may use from the build running it."""

    directory: Path
    settings: Settings

    async def update_log(self, slot: str, text: str) -> None: ...


class Step:
    """A verification step.

    Subclasses set step_id and name, and implement run().
    """

    step_id: ClassVar[str] = ""
    name: ClassVar[str] = ""

    def __init__(self, host: StepHost) -> None:
        self.host = host
        self.success = True
        self.status = "Unknown"
        self.started_at = time.monotonic()

    @property
    def id(self) -> str:
        """Identifier used in log URLs and record slots."""
        return self.step_id

    @property
    def directory(self) -> Path:
        """The shared checkout."""
        return self.host.directory

    @property
    def settings(self) -> Settings:
        """Settings of the server running the build."""
        return self.host.settings

    def set_status(self, success: bool, status: str) -> None:
        """Record the outcome of the step."""
        self.success = success
        self.status = status

    async def log(self, text: str) -> None:
        """Append text to this step's log."""
        await self.host.update_log(self.step_id, text)

    def status_output(self) -> str:
        """Describe whether the step was executed successfully."""
        elapsed = time.monotonic() - self.started_at
        verdict = "success!" if self.success else "failure!"
        return f"\n\nStep finished (took {elapsed:.3f} seconds); {verdict} {self.status}"

    async def run(self) -> None:
        """Execute the step.

        Raises:
            StepExecutionError: If the step cannot complete.
        """
        raise NotImplementedError(f"{type(self).__name__} does not implement run()")


__all__ = ["Step", "StepExecutionError", "StepHost"]
