"""Serialization lock for the shared working tree.

Builds share a single checkout, so they have to run one after another.
BuildLock is a FIFO mutex without reentrancy or timeout: every caller
of acquire() installs its own completion future as the new tail before
waiting on its predecessor, so the order in which acquire() is called
is the order in which the lock is held.
"""

from __future__ import annotations

import asyncio
import itertools
import logging

logger = logging.getLogger(__name__)


class LockReleaseError(Exception):
    """Raised when a lock token is released more than once."""

    def __init__(self, message: str, code: str = "lock_already_released") -> None:
        super().__init__(message)
        self.code = code


class LockToken:
    """Proof of holding the build lock. Must be released exactly once."""

    def __init__(self, number: int, done: asyncio.Future[None]) -> None:
        self.number = number
        self._done = done

    @property
    def released(self) -> bool:
        """Whether this token has been released."""
        return self._done.done()

    def release(self) -> None:
        """Release the lock, allowing the next build to start.

        Raises:
            LockReleaseError: If the token was already released.
        """
        if self._done.done():
            raise LockReleaseError(f"Build lock #{self.number} was already released")
        self._done.set_result(None)
        logger.debug("Build lock #%d released", self.number)


class BuildLock:
    """Single-holder FIFO lock guarding the shared checkout."""

    def __init__(self) -> None:
        self._tail: asyncio.Future[None] | None = None
        self._counter = itertools.count(1)
        self._waiting = 0

    @property
    def locked(self) -> bool:
        """Whether a build holds or has queued for the lock."""
        return self._tail is not None and not self._tail.done()

    @property
    def waiting(self) -> int:
        """Number of callers queued behind the current holder."""
        return self._waiting

    async def acquire(self) -> LockToken:
        """Wait for all earlier callers to release, then take the lock.

        Returns:
            Token whose release() lets the next caller proceed.
        """
        previous = self._tail
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._tail = done
        token = LockToken(next(self._counter), done)

        if previous is not None and not previous.done():
            logger.debug("Build lock #%d waiting for predecessor", token.number)
            self._waiting += 1
            try:
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # Hand our turn on to whoever queued behind us.
                previous.add_done_callback(lambda _: _resolve(done))
                raise
            finally:
                self._waiting -= 1

        logger.debug("Build lock #%d acquired", token.number)
        return token


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


__all__ = ["BuildLock", "LockReleaseError", "LockToken"]
