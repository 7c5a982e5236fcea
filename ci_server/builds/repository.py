"""Repository driver for the shared checkout.

Brings the working tree to the pull request's base commit and applies
the pull request diff on top of it:

    git fetch --all
    git reset --hard
    git clean -ffdx
    git checkout <base branch>
    git reset --hard <base sha>
    git apply -            (diff downloaded from the pull request)

The sequence is strictly ordered; the first failing command aborts the
rest and surfaces as RepositoryUpdateError.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import httpx

from ci_server.builds.runner import (
    CommandExecutionError,
    LogSink,
    run_command,
)
from ci_server.builds.storage import verify_sha
from ci_server.types import BaseRef

logger = logging.getLogger(__name__)

# Timeout for each git command (seconds)
COMMAND_TIMEOUT = 30

# Timeout for downloading the diff (seconds)
DIFF_TIMEOUT = 30

# Conservative subset of valid git ref names
BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/][A-Za-z0-9._/-]*$")


class RepositoryUpdateError(Exception):
    """Raised when the working tree cannot be brought up to date."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "repository_update_failed",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


def validate_base(base: BaseRef) -> None:
    """Check that the base branch and sha are safe to pass to git.

    Raises:
        RepositoryUpdateError: If either is malformed.
    """
    if not BRANCH_PATTERN.match(base.branch) or ".." in base.branch:
        raise RepositoryUpdateError(
            f"Invalid base branch: {base.branch!r}", code="invalid_branch"
        )
    if not verify_sha(base.sha):
        raise RepositoryUpdateError(f"Invalid base sha: {base.sha!r}", code="invalid_sha")


class Repository:
    """The checkout on which the verification steps take place."""

    def __init__(
        self,
        directory: Path,
        timeout: float = COMMAND_TIMEOUT,
        diff_timeout: float = DIFF_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.directory = Path(directory)
        self.timeout = timeout
        self.diff_timeout = diff_timeout
        self._client = client

    async def _git(self, log: LogSink, *args: str, stdin: bytes | None = None) -> None:
        try:
            result = await run_command(
                ["git", *args],
                cwd=self.directory,
                log=log,
                timeout=self.timeout,
                stdin=stdin,
            )
        except CommandExecutionError as e:
            raise RepositoryUpdateError(str(e), exit_code=e.exit_code, code=e.code) from e

        if not result.success:
            raise RepositoryUpdateError(
                f"{result.command} failed with exit code {result.exit_code}",
                exit_code=result.exit_code,
            )

    async def update_to(self, log: LogSink, base: BaseRef) -> None:
        """Reset the checkout and move it to the base commit.

        Args:
            log: Sink receiving command output.
            base: Branch and commit to check out.

        Raises:
            RepositoryUpdateError: If the base is malformed or a command fails.
        """
        validate_base(base)
        logger.info("Updating %s to %s@%s", self.directory, base.branch, base.sha[:12])

        await self._git(log, "fetch", "--all")
        await self._git(log, "reset", "--hard")
        await self._git(log, "clean", "-ffdx")
        await self._git(log, "checkout", base.branch, "--")
        await self._git(log, "reset", "--hard", base.sha)

    async def fetch_diff(self, diff_url: str) -> bytes:
        """Download the pull request diff.

        Raises:
            RepositoryUpdateError: If the download fails.
        """
        logger.debug("Fetching diff from %s", diff_url)
        try:
            if self._client is not None:
                response = await self._client.get(
                    diff_url, timeout=self.diff_timeout, follow_redirects=True
                )
            else:
                async with httpx.AsyncClient(
                    timeout=self.diff_timeout, follow_redirects=True
                ) as client:
                    response = await client.get(diff_url)
            response.raise_for_status()
            return response.content

        except httpx.HTTPStatusError as e:
            raise RepositoryUpdateError(
                f"HTTP error fetching diff: {e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise RepositoryUpdateError(
                f"Timeout fetching diff from {diff_url}",
                code="timeout",
            ) from e
        except httpx.HTTPError as e:
            raise RepositoryUpdateError(
                f"Network error fetching diff: {e}",
                code="network_error",
            ) from e
        except httpx.InvalidURL as e:
            raise RepositoryUpdateError(
                f"Invalid diff URL {diff_url!r}: {e}",
                code="invalid_url",
            ) from e

    async def apply_diff(self, log: LogSink, diff_url: str) -> None:
        """Apply the pull request diff to the checkout.

        Args:
            log: Sink receiving command output.
            diff_url: URL of the unified diff between base and pull request.

        Raises:
            RepositoryUpdateError: If the diff cannot be fetched or applied.
        """
        diff = await self.fetch_diff(diff_url)
        await log(f"Fetched {len(diff)} bytes of diff from {diff_url}\n")
        if not diff.strip():
            return
        await self._git(log, "apply", "--whitespace=nowarn", "-", stdin=diff)


__all__ = [
    "BRANCH_PATTERN",
    "COMMAND_TIMEOUT",
    "Repository",
    "RepositoryUpdateError",
    "validate_base",
]
