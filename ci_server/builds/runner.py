"""Command runner for build subprocesses.

This module handles:
- Executing commands without a shell
- Streaming merged stdout/stderr to a log sink while the command runs
- Enforcing per-command timeouts

Used by the repository driver and by the compiler and test steps.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shlex
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

LogSink = Callable[[str], Awaitable[None]]

# Bytes read from the process per log update
OUTPUT_CHUNK_SIZE = 16 * 1024


class CommandExecutionError(Exception):
    """Raised when a command cannot be executed."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class CommandTimeoutError(CommandExecutionError):
    """Raised when a command exceeds its timeout and was killed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=-1, code="command_timeout")


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was executed.
        exit_code: Process exit code.
        output: Merged stdout and stderr.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    output: str
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        """Whether the command exited with status zero."""
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        """Wall time in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


async def run_command(
    args: Sequence[str],
    cwd: Path,
    log: LogSink,
    timeout: float | None = None,
    stdin: bytes | None = None,
    env_override: dict[str, str] | None = None,
) -> CommandResult:
    """Execute a command, streaming its output to log.

    Args:
        args: Command and arguments.
        cwd: Working directory.
        log: Async sink receiving the command line, output and exit status.
        timeout: Timeout in seconds (None = no timeout).
        stdin: Optional bytes fed to the process's standard input.
        env_override: Optional environment variable overrides.

    Returns:
        CommandResult with execution details. A non-zero exit is not an error.

    Raises:
        CommandTimeoutError: If the command timed out.
        CommandExecutionError: If the command could not be started.
    """
    cmd_str = shlex.join(args)
    logger.info("Executing: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)
    await log(f"$ {cmd_str}\n")

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=env,
        )
    except OSError as e:
        message = f"Failed to execute {args[0]}: {e}"
        logger.error(message)
        await log(f"{message}\n")
        raise CommandExecutionError(message) from e

    chunks: list[str] = []

    async def feed() -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(stdin or b"")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("%s closed its input early", args[0])
        finally:
            process.stdin.close()

    async def drain_output() -> None:
        assert process.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await process.stdout.read(OUTPUT_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                chunks.append(text)
                await log(text)
            if not data:
                break

    async def communicate() -> int:
        if stdin is not None:
            await asyncio.gather(feed(), drain_output())
        else:
            await drain_output()
        return await process.wait()

    try:
        exit_code = await asyncio.wait_for(communicate(), timeout)
    except asyncio.TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        message = f"{cmd_str} timed out after {timeout} seconds"
        logger.error(message)
        await log(f"\n# TIMEOUT after {timeout} seconds\n")
        raise CommandTimeoutError(message) from None

    finished_at = datetime.now(timezone.utc)
    result = CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        output="".join(chunks),
        started_at=started_at,
        finished_at=finished_at,
    )

    if not result.success:
        logger.error("%s failed with exit code %d", cmd_str, exit_code)
    await log(f"# Exit code: {exit_code} ({result.duration:.1f}s)\n")
    return result


__all__ = [
    "CommandExecutionError",
    "CommandResult",
    "CommandTimeoutError",
    "LogSink",
    "run_command",
]
