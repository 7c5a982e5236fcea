"""GitHub webhook endpoint.

POST /push receives GitHub events. After authentication, pull_request
events trigger a build; the response is sent before the build starts.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi import status as http_status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ci_server.authentication import EVENT_HEADER
from ci_server.builds.service import BuildService
from ci_server.builds.storage import (
    SHA_PATTERN,
    BuildStorage,
    BuildValidationError,
    StorageError,
)
from ci_server.types import BaseRef, TriggerOptions
from web.deps import Service, Storage, WebhookAuthenticator

logger = logging.getLogger(__name__)

router = APIRouter()

HANDLED_EVENT = "pull_request"


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CommitRef(_Model):
    sha: str = Field(pattern=SHA_PATTERN.pattern)


class BaseBranch(_Model):
    ref: str
    sha: str = Field(pattern=SHA_PATTERN.pattern)


class GitHubUser(_Model):
    login: str


class PullRequest(_Model):
    number: int | None = None
    title: str
    html_url: str
    statuses_url: str
    diff_url: str
    head: CommitRef
    base: BaseBranch
    user: GitHubUser


class PullRequestEvent(_Model):
    """The parts of a pull_request event a build needs."""

    action: str | None = None
    pull_request: PullRequest

    def to_trigger_options(self) -> TriggerOptions:
        pr = self.pull_request
        return TriggerOptions(
            sha=pr.head.sha,
            author=pr.user.login,
            title=pr.title,
            url=pr.html_url,
            status_url=pr.statuses_url,
            diff_url=pr.diff_url,
            base=BaseRef(branch=pr.base.ref, sha=pr.base.sha),
        )


async def run_build(
    service: BuildService,
    storage: BuildStorage,
    options: TriggerOptions,
    label: str,
) -> None:
    """Run a triggered build in the background."""
    try:
        outcome = await service.trigger(storage, options)
    except (BuildValidationError, StorageError) as e:
        logger.error("Build for %s was not started: %s", label, e)
        return
    except Exception:
        logger.exception("Build for %s failed", label)
        return
    logger.info("Build finished for %s: %s", label, outcome.phase.value)


@router.post("/push", response_class=PlainTextResponse)
async def push(
    request: Request,
    background_tasks: BackgroundTasks,
    authenticator: WebhookAuthenticator,
    service: Service,
    storage: Storage,
) -> str:
    """Handle a GitHub webhook delivery.

    Raises:
        HTTPException: 401 if authentication fails, 400 for a malformed body.
    """
    body = await request.body()
    if authenticator.verify(request.headers, body):
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "authentication_failed",
                "message": "Webhook signature could not be verified",
            },
        )

    if request.headers.get(EVENT_HEADER) != HANDLED_EVENT:
        return "Event skipped."

    try:
        event = PullRequestEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Rejected malformed %s event: %s", HANDLED_EVENT, e)
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "invalid_payload",
                "message": "The event body is not a valid pull_request event",
            },
        ) from None

    client = request.client.host if request.client else "unknown"
    label = f"PR #{event.pull_request.number}"
    logger.info("[%s] Triggering a build for %s", client, label)

    background_tasks.add_task(
        run_build, service, storage, event.to_trigger_options(), label
    )
    return "Event handled."
