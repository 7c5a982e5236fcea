"""Build log pages.

- GET /build/ - The most recent builds
- GET /build/{sha} - Primary log of a build
- GET /build/{sha}/{slot} - Log of the repository update or a step
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi import status as http_status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ci_server.builds.storage import step_slots
from web.deps import Storage

router = APIRouter()

templates = Jinja2Templates(directory=Path(__file__).resolve().parent.parent / "templates")


def _not_found(sha: str, slot: str | None = None) -> HTTPException:
    target = f"{sha}/{slot}" if slot else sha
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={"code": "build_not_found", "message": f"Build log not found: {target}"},
    )


def _render_log(
    request: Request, sha: str, record: dict[str, Any], slot: str | None
) -> HTMLResponse:
    return templates.TemplateResponse(
        request=request,
        name="build_log.html",
        context={
            "sha": sha,
            "build": record,
            "slots": step_slots(record),
            "active_slot": slot,
            "log": record["log"] if slot is None else record[slot],
        },
    )


@router.get("/", response_class=HTMLResponse, name="builds_list")
def list_builds(request: Request, storage: Storage) -> HTMLResponse:
    """Render the list of most recent builds."""
    return templates.TemplateResponse(
        request=request,
        name="builds.html",
        context={"builds": storage.get_latest_builds()},
    )


@router.get("/{sha}", response_class=HTMLResponse, name="build_log")
async def build_log(request: Request, sha: str, storage: Storage) -> HTMLResponse:
    """Render the primary log of a build.

    Raises:
        HTTPException: 404 if the build is unknown.
    """
    record = await storage.get_build(sha)
    if record is None or "log" not in record:
        raise _not_found(sha)
    return _render_log(request, sha, record, None)


@router.get("/{sha}/{slot}", response_class=HTMLResponse, name="build_step_log")
async def build_step_log(
    request: Request, sha: str, slot: str, storage: Storage
) -> HTMLResponse:
    """Render the log of one step of a build.

    Raises:
        HTTPException: 404 if the build or the step is unknown.
    """
    record = await storage.get_build(sha)
    if record is None or slot not in step_slots(record):
        raise _not_found(sha, slot)
    return _render_log(request, sha, record, slot)
