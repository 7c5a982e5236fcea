"""Verification steps.

Steps are registered by identifier; Settings.steps selects which of them
run for every build, in order.
"""

from ci_server.steps.base import Step, StepExecutionError, StepHost
from ci_server.steps.javascript_tests import JavaScriptTestsStep
from ci_server.steps.pawn_compile import PawnCompileStep
from ci_server.steps.validate_json import ValidateJsonStep

STEP_REGISTRY: dict[str, type[Step]] = {
    step.step_id: step
    for step in (ValidateJsonStep, PawnCompileStep, JavaScriptTestsStep)
}


class UnknownStepError(Exception):
    """Raised when the configuration names a step that does not exist."""

    def __init__(self, step_id: str, code: str = "unknown_step") -> None:
        super().__init__(f"Unknown step: {step_id}")
        self.step_id = step_id
        self.code = code


def resolve_steps(step_ids: list[str]) -> list[type[Step]]:
    """Look up the step classes for a list of identifiers.

    Raises:
        UnknownStepError: If an identifier is not registered.
    """
    resolved: list[type[Step]] = []
    for step_id in step_ids:
        if step_id not in STEP_REGISTRY:
            raise UnknownStepError(step_id)
        resolved.append(STEP_REGISTRY[step_id])
    return resolved


__all__ = [
    "STEP_REGISTRY",
    "JavaScriptTestsStep",
    "PawnCompileStep",
    "Step",
    "StepExecutionError",
    "StepHost",
    "UnknownStepError",
    "ValidateJsonStep",
    "resolve_steps",
]
