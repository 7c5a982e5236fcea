"""Shared type definitions for ci_server.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class StatusState(str, Enum):
    """State of a commit status on the statuses API."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class BuildPhase(str, Enum):
    """Phase of a triggered build.

    COMPLETED and FAILED are terminal. FAILED is only reachable from
    REPOSITORY_UPDATING.
    """

    CREATED = "created"
    REPOSITORY_UPDATING = "repository_updating"
    STEPS_RUNNING = "steps_running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BaseRef:
    """Branch and commit the pull request is based on."""

    branch: str
    sha: str


@dataclass(frozen=True)
class TriggerOptions:
    """Everything a build needs to know about the change under review."""

    sha: str
    author: str
    title: str
    url: str
    status_url: str
    diff_url: str
    base: BaseRef


@dataclass
class BuildSummary:
    """Entry in the list of most recent builds."""

    sha: str
    date: str
    author: str
    title: str
    url: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {
            "sha": self.sha,
            "date": self.date,
            "author": self.author,
            "title": self.title,
            "url": self.url,
        }


@dataclass
class StepResult:
    """Terminal status reported for a single step."""

    step_id: str
    name: str
    state: StatusState
    description: str


@dataclass
class BuildOutcome:
    """Result of a triggered build."""

    sha: str
    phase: BuildPhase
    step_results: list[StepResult] = field(default_factory=list)
    logs: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """Whether the build completed with every step successful."""
        return self.phase == BuildPhase.COMPLETED and all(
            r.state == StatusState.SUCCESS for r in self.step_results
        )


__all__ = [
    "BaseRef",
    "BuildOutcome",
    "BuildPhase",
    "BuildSummary",
    "StatusState",
    "StepResult",
    "TriggerOptions",
]
