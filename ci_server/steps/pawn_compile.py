"""Step verifying that the Pawn gamemode still compiles."""

from __future__ import annotations

from ci_server.builds.runner import CommandExecutionError, run_command
from ci_server.steps.base import Step, StepExecutionError

SCRIPT_NAME = "lvp.pwn"
BINARY_NAME = "lvp.amx"


class PawnCompileStep(Step):
    step_id = "pawn-compile"
    name = "Pawn compilation"

    async def run(self) -> None:
        compiler = self.settings.compiler_path.resolve()
        script_dir = self.directory / "pawn"

        try:
            result = await run_command(
                ["nice", "-n", "19", str(compiler), SCRIPT_NAME],
                cwd=script_dir,
                log=self.log,
                timeout=self.settings.compile_timeout,
            )
        except CommandExecutionError as e:
            raise StepExecutionError(f"Unable to compile {BINARY_NAME}: {e}") from e

        if not result.success:
            self.set_status(False, f"Found errors while trying to compile {BINARY_NAME}.")
            return

        binary = script_dir / BINARY_NAME
        try:
            size_kb = binary.stat().st_size / 1024
        except OSError:
            self.set_status(False, f"The compiler did not produce {BINARY_NAME}.")
            return

        self.set_status(True, f"Successfully compiled {BINARY_NAME} ({size_kb:.0f} kB).")


__all__ = ["PawnCompileStep"]
