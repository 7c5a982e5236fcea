"""Build service module.

This module runs a build for a pull request:
1. Creates the build record
2. Acquires the build lock, waiting for earlier builds to finish
3. Updates the shared checkout to the base commit and applies the diff
4. Runs every registered step concurrently, each reporting its own status
5. Releases the build lock

A failing repository update stops the build before any step runs. A
failing step never affects its siblings. Every status that was reported
as pending is followed by a terminal status, and the lock is released
exactly once however the build ends.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ci_server.builds.lock import BuildLock
from ci_server.builds.repository import Repository, RepositoryUpdateError
from ci_server.builds.storage import BuildStorage, StorageError
from ci_server.status import StatusReporter, StatusReportError
from ci_server.steps.base import Step
from ci_server.types import (
    BuildOutcome,
    BuildPhase,
    StatusState,
    StepResult,
    TriggerOptions,
)

if TYPE_CHECKING:
    from ci_server.config import Settings

logger = logging.getLogger(__name__)

# Shown on the pull request when a step raised instead of reporting an outcome
BUILD_ERROR_MSG = "An error occurred while executing this step."

UPDATE_SLOT = "update"
UPDATE_CONTEXT = "Repository update"
UPDATE_ERROR_MSG = "Unable to update the repository to the pull request."


class BuildService:
    """Runs builds one at a time against the shared checkout."""

    def __init__(
        self,
        settings: Settings,
        repository: Repository,
        reporter: StatusReporter,
        steps: list[type[Step]],
        lock: BuildLock | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.reporter = reporter
        self.steps = list(steps)
        self.lock = lock or BuildLock()

    async def trigger(self, storage: BuildStorage, options: TriggerOptions) -> BuildOutcome:
        """Run a build for a pull request.

        Args:
            storage: Store receiving the build record and logs.
            options: Details of the change under review.

        Returns:
            BuildOutcome with the final phase, step results and logs.

        Raises:
            BuildValidationError: If the sha is malformed. Nothing else runs.
            StorageError: If the build record cannot be created.
        """
        build = BuildRun(self, storage, options)
        await build.create_log()

        token = await self.lock.acquire()
        logger.info("Build for %s acquired lock #%d", options.sha, token.number)
        try:
            if await build.update_repository():
                await build.run_steps(self.steps)
        finally:
            token.release()
            logger.info("Build for %s finished: %s", options.sha, build.phase.value)

        return build.outcome()


class BuildRun:
    """State of a single build. Acts as the host of its steps."""

    def __init__(
        self,
        service: BuildService,
        storage: BuildStorage,
        options: TriggerOptions,
    ) -> None:
        self.service = service
        self.storage = storage
        self.options = options
        self.settings = service.settings
        self.phase = BuildPhase.CREATED
        self.logs: dict[str, str] = {}
        self.results: list[StepResult] = []

    @property
    def sha(self) -> str:
        return self.options.sha

    @property
    def directory(self) -> Path:
        return self.service.repository.directory

    def outcome(self) -> BuildOutcome:
        return BuildOutcome(
            sha=self.sha,
            phase=self.phase,
            step_results=list(self.results),
            logs=dict(self.logs),
        )

    async def create_log(self) -> None:
        """Create the build record. Failure aborts the build."""
        try:
            await self.storage.create_build(
                self.sha,
                author=self.options.author,
                title=self.options.title,
                url=self.options.url,
            )
        except Exception:
            logger.exception("Unable to create the build record for %s", self.sha)
            raise

    async def update_log(self, slot: str, text: str) -> None:
        """Append text to a log slot.

        The text is kept in memory when the record cannot be written.
        """
        self.logs[slot] = self.logs.get(slot, "") + text
        try:
            await self.storage.update_log(self.sha, slot, text)
        except StorageError as e:
            logger.error("Unable to store %s log for %s: %s", slot, self.sha, e)

    async def update_status(
        self,
        slot: str,
        context: str,
        state: StatusState,
        description: str,
    ) -> bool:
        """Report a status for one slot. Failures are logged, not raised.

        Returns:
            Whether the status was delivered.
        """
        logger.info(
            "Updating the status for %s (step: %s; status: %s)",
            self.sha,
            slot,
            state.value,
        )
        payload = self.service.reporter.payload(self.sha, slot, context, state, description)
        try:
            await self.service.reporter.post(self.options.status_url, payload)
        except StatusReportError as e:
            logger.error("Unable to report %s status for %s: %s", slot, self.sha, e)
            return False
        return True

    async def update_repository(self) -> bool:
        """Bring the checkout to the base commit and apply the diff.

        Returns:
            Whether the update succeeded. On failure the build is FAILED.
        """
        self.phase = BuildPhase.REPOSITORY_UPDATING
        repository = self.service.repository

        async def log(text: str) -> None:
            await self.update_log(UPDATE_SLOT, text)

        await log("Update starting.\n")
        try:
            await repository.update_to(log, self.options.base)
            await repository.apply_diff(log, self.options.diff_url)
        except RepositoryUpdateError as e:
            logger.error("Repository update for %s failed: %s", self.sha, e)
            await log(f"Error: {e}\n")
            await self.update_status(
                UPDATE_SLOT, UPDATE_CONTEXT, StatusState.FAILURE, UPDATE_ERROR_MSG
            )
            self.phase = BuildPhase.FAILED
            return False

        await log("Update completed.\n")
        return True

    async def run_steps(self, steps: list[type[Step]]) -> None:
        """Run all steps concurrently and wait for every one to settle.

        A step whose reporting itself raised still gets an error result;
        the remaining steps run to completion either way.
        """
        self.phase = BuildPhase.STEPS_RUNNING
        settled = await asyncio.gather(
            *(self.run_step(step) for step in steps), return_exceptions=True
        )

        results: list[StepResult] = []
        for step_cls, result in zip(steps, settled):
            if isinstance(result, BaseException):
                result = await self._step_crashed(step_cls, result)
            results.append(result)
        self.results = results
        self.phase = BuildPhase.COMPLETED

    async def _step_crashed(self, step_cls: type[Step], error: BaseException) -> StepResult:
        logger.error(
            "Step %s of %s could not be reported: %r",
            step_cls.step_id,
            self.sha,
            error,
            exc_info=error,
        )
        try:
            await self.update_status(
                step_cls.step_id, step_cls.name, StatusState.ERROR, BUILD_ERROR_MSG
            )
        except Exception:
            logger.exception("Unable to report the error status of %s", step_cls.step_id)
        return StepResult(
            step_id=step_cls.step_id,
            name=step_cls.name,
            state=StatusState.ERROR,
            description=BUILD_ERROR_MSG,
        )

    async def run_step(self, step_cls: type[Step]) -> StepResult:
        """Run one step and report its status.

        Any exception raised by the step is reported as an error status
        with a generic description; it does not reach sibling steps.
        """
        step_id, name = step_cls.step_id, step_cls.name
        step: Step | None = None

        await self.update_log(step_id, "Step starting.\n")
        await self.update_status(step_id, name, StatusState.PENDING, "Pending.")

        try:
            step = step_cls(self)
            await step.run()
        except Exception as e:
            logger.exception("Step %s of %s raised", step_id, self.sha)
            state, description = StatusState.ERROR, BUILD_ERROR_MSG
            if step is not None:
                step.set_status(False, BUILD_ERROR_MSG)
            await self.update_log(step_id, f"Error: {e}\n")
        else:
            state = StatusState.SUCCESS if step.success else StatusState.FAILURE
            description = step.status

        await self.update_status(step_id, name, state, description)
        if step is not None:
            await self.update_log(step_id, step.status_output())

        return StepResult(step_id=step_id, name=name, state=state, description=description)


__all__ = [
    "BUILD_ERROR_MSG",
    "UPDATE_CONTEXT",
    "UPDATE_SLOT",
    "BuildRun",
    "BuildService",
]
