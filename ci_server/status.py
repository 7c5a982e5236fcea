"""Status reporting against the GitHub statuses API.

Every step shows up as its own status row on the pull request. One POST
is issued per state transition; anything but HTTP 201 is a failure and
no retry is attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ci_server import __version__
from ci_server.types import StatusState

logger = logging.getLogger(__name__)

# Timeout for status requests (seconds)
STATUS_TIMEOUT = 30

USER_AGENT = f"ci-server/{__version__}"


class StatusReportError(Exception):
    """Raised when a status update could not be delivered."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = "status_report_failed",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass(frozen=True)
class StatusPayload:
    """Body of a status update."""

    state: StatusState
    target_url: str
    description: str
    context: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {
            "state": self.state.value,
            "target_url": self.target_url,
            "description": self.description,
            "context": self.context,
        }


class StatusReporter:
    """Posts status updates for builds."""

    def __init__(
        self,
        endpoint: str,
        token: str,
        timeout: float = STATUS_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self._token = token
        self.timeout = timeout
        self._client = client

    def target_url(self, sha: str, slot: str) -> str:
        """Public URL of the log for a build's step."""
        return f"{self.endpoint}/build/{sha}/{slot}"

    def payload(
        self,
        sha: str,
        slot: str,
        context: str,
        state: StatusState,
        description: str,
    ) -> StatusPayload:
        """Build the payload for a step's status."""
        return StatusPayload(
            state=state,
            target_url=self.target_url(sha, slot),
            description=description,
            context=context,
        )

    async def post(self, status_url: str, payload: StatusPayload) -> None:
        """Send one status update.

        Args:
            status_url: Statuses URL of the commit, supplied by the webhook.
            payload: The status to post.

        Raises:
            StatusReportError: If the request fails or the response is not 201.
        """
        headers = {
            "Authorization": f"Bearer {self._token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github+json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    status_url,
                    json=payload.to_dict(),
                    headers=headers,
                    timeout=self.timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        status_url, json=payload.to_dict(), headers=headers
                    )
        except httpx.TimeoutException as e:
            raise StatusReportError(
                f"Timeout posting status to {status_url}", code="timeout"
            ) from e
        except httpx.HTTPError as e:
            raise StatusReportError(
                f"Network error posting status: {e}", code="network_error"
            ) from e
        except httpx.InvalidURL as e:
            raise StatusReportError(
                f"Invalid status URL {status_url!r}: {e}", code="invalid_url"
            ) from e

        if response.status_code != 201:
            raise StatusReportError(
                f"Unable to update the status: HTTP {response.status_code}",
                status_code=response.status_code,
            )


__all__ = [
    "STATUS_TIMEOUT",
    "StatusPayload",
    "StatusReportError",
    "StatusReporter",
]
