"""Tests for FastAPI web API.

Uses TestClient to test all endpoints. Builds triggered through the
webhook run as background tasks, which TestClient completes before
returning the response.
"""

import json

import httpx
import pytest
import respx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ci_server import __version__
from ci_server.authentication import Authenticator, compute_signature
from ci_server.builds.service import BuildService
from ci_server.builds.storage import BuildStorage
from ci_server.config import Settings
from ci_server.status import StatusReporter
from ci_server.steps.base import Step
from web.app import create_app
from web.routers import builds, config, health, robots, webhook
from web.routers.webhook import PullRequestEvent, run_build

SECRET = "webhook-secret"
HEAD_SHA = "1" * 40
BASE_SHA = "2" * 40
STATUS_URL = f"https://api.github.example/repos/org/repo/statuses/{HEAD_SHA}"
DIFF_URL = "https://github.example/org/repo/pull/3.diff"


class FakeRepository:
    def __init__(self, directory):
        self.directory = directory

    async def update_to(self, log, base):
        await log(f"$ git checkout {base.branch} --\n")

    async def apply_diff(self, log, diff_url):
        await log(f"Fetched 0 bytes of diff from {diff_url}\n")


class EchoStep(Step):
    step_id = "echo"
    name = "Echo"

    async def run(self) -> None:
        await self.log("<script>alert(1)</script>\n")
        self.set_status(True, "Echoed.")


def create_test_app(tmp_path) -> FastAPI:
    """Create a minimal FastAPI app for testing without lifespan."""
    settings = Settings(
        secret=SECRET,
        endpoint="https://ci.example.com",
        storage_path=tmp_path / "builds",
        checkout_dir=tmp_path / "checkout",
    )
    application = FastAPI(title="CI Server", version=__version__)

    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(robots.router, tags=["robots"])
    application.include_router(webhook.router, tags=["webhook"])
    application.include_router(builds.router, prefix="/build", tags=["builds"])

    application.state.settings = settings
    application.state.storage = BuildStorage(settings.storage_path)
    application.state.authenticator = Authenticator(SECRET)
    application.state.build_service = BuildService(
        settings,
        repository=FakeRepository(settings.checkout_dir),
        reporter=StatusReporter(settings.endpoint, "token"),
        steps=[EchoStep],
    )
    return application


def pull_request_event(sha: str = HEAD_SHA) -> dict:
    return {
        "action": "opened",
        "number": 3,
        "pull_request": {
            "number": 3,
            "title": "Add <feature>",
            "html_url": "https://github.example/org/repo/pull/3",
            "statuses_url": STATUS_URL,
            "diff_url": DIFF_URL,
            "head": {"sha": sha, "ref": "feature"},
            "base": {"sha": BASE_SHA, "ref": "main"},
            "user": {"login": "octocat"},
        },
    }


def signed_headers(body: bytes, event: str = "pull_request") -> dict[str, str]:
    return {
        "X-GitHub-Event": event,
        "X-Hub-Signature": compute_signature(SECRET, body),
        "Content-Type": "application/json",
    }


@pytest.fixture
def app(tmp_path):
    return create_test_app(tmp_path)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def status_api():
    """Intercept outgoing status posts."""
    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(STATUS_URL).mock(return_value=httpx.Response(201))
        yield route


class TestHealthEndpoint:
    """Tests for health endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["building"] is False
        assert data["queued"] == 0


class TestConfigEndpoint:
    """Tests for config endpoint."""

    def test_config_masks_secrets(self, client):
        response = client.get("/config")
        assert response.status_code == 200
        data = response.json()
        assert data["secret"] == "********"
        assert data["oauth_token"] == ""
        assert data["endpoint"] == "https://ci.example.com"


class TestRobots:
    """Tests for robots.txt."""

    def test_disallow_all(self, client):
        response = client.get("/robots.txt")
        assert response.status_code == 200
        assert response.text == "User-agent: *\nDisallow: /"
        assert response.headers["content-type"].startswith("text/plain")


class TestWebhook:
    """Tests for POST /push."""

    def test_pull_request_triggers_build(self, client, app, status_api):
        """A signed pull_request event runs a build."""
        body = json.dumps(pull_request_event()).encode()

        response = client.post("/push", content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.text == "Event handled."
        record = client.get(f"/build/{HEAD_SHA}/echo")
        assert record.status_code == 200
        states = [json.loads(c.request.content)["state"] for c in status_api.calls]
        assert states == ["pending", "success"]
        latest = app.state.storage.get_latest_builds()
        assert [b.sha for b in latest] == [HEAD_SHA]
        assert latest[0].author == "octocat"

    def test_tampered_body_rejected(self, client, app, status_api):
        """A bad signature is rejected and changes nothing."""
        body = json.dumps(pull_request_event()).encode()
        headers = signed_headers(body)

        response = client.post("/push", content=body + b" ", headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "authentication_failed"
        assert app.state.storage.get_latest_builds() == []
        assert not (app.state.settings.storage_path / HEAD_SHA).exists()
        assert not status_api.called

    def test_unsigned_rejected(self, client):
        response = client.post("/push", content=b"{}", headers={"X-GitHub-Event": "ping"})
        assert response.status_code == 401

    def test_other_events_skipped(self, client, app, status_api):
        body = b'{"zen": "Design for failure."}'
        response = client.post("/push", content=body, headers=signed_headers(body, "ping"))

        assert response.status_code == 200
        assert response.text == "Event skipped."
        assert app.state.storage.get_latest_builds() == []
        assert not status_api.called

    def test_malformed_payload(self, client, app):
        body = b'{"pull_request": {"title": "missing everything"}}'
        response = client.post("/push", content=body, headers=signed_headers(body))

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_payload"
        assert app.state.storage.get_latest_builds() == []

    def test_body_not_json(self, client):
        body = b"{not json"
        response = client.post("/push", content=body, headers=signed_headers(body))
        assert response.status_code == 400

    def test_invalid_sha_payload(self, client, app):
        body = json.dumps(pull_request_event(sha="../../etc/passwd")).encode()
        response = client.post("/push", content=body, headers=signed_headers(body))

        assert response.status_code == 400
        assert list((app.state.settings.storage_path).glob("*")) == []


class TestBuildPages:
    """Tests for the build log pages."""

    def _trigger(self, client):
        body = json.dumps(pull_request_event()).encode()
        client.post("/push", content=body, headers=signed_headers(body))

    def test_list_empty(self, client):
        response = client.get("/build/")
        assert response.status_code == 200
        assert "No builds yet." in response.text

    def test_list_recent(self, client, status_api):
        self._trigger(client)
        response = client.get("/build/")
        assert response.status_code == 200
        assert "octocat" in response.text
        assert "Add &lt;feature&gt;" in response.text
        assert f"/build/{HEAD_SHA}/update" in response.text

    def test_primary_log(self, client, status_api):
        self._trigger(client)
        response = client.get(f"/build/{HEAD_SHA}")
        assert response.status_code == 200
        assert "Build started..." in response.text

    def test_step_log_escaped(self, client, status_api):
        """Log contents are rendered as text."""
        self._trigger(client)
        response = client.get(f"/build/{HEAD_SHA}/echo")
        assert response.status_code == 200
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text
        assert "<script>alert(1)</script>" not in response.text

    def test_update_log(self, client, status_api):
        self._trigger(client)
        response = client.get(f"/build/{HEAD_SHA}/update")
        assert response.status_code == 200
        assert "Update completed." in response.text

    def test_unknown_build(self, client):
        response = client.get(f"/build/{'f' * 40}")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "build_not_found"

    def test_invalid_sha(self, client):
        assert client.get("/build/not-a-sha").status_code == 404

    def test_unknown_step(self, client, status_api):
        self._trigger(client)
        assert client.get(f"/build/{HEAD_SHA}/lint").status_code == 404

    def test_metadata_is_not_a_step(self, client, status_api):
        self._trigger(client)
        assert client.get(f"/build/{HEAD_SHA}/author").status_code == 404


class TestCreateApp:
    """Tests for the application factory with its lifespan."""

    def test_lifespan_wires_services(self, tmp_path):
        settings = Settings(
            storage_path=tmp_path / "builds",
            checkout_dir=tmp_path / "checkout",
            steps=["validate-json"],
        )
        app = create_app(settings)

        with TestClient(app) as client:
            assert client.get("/health").json()["status"] == "ok"
            assert client.get("/build/").status_code == 200
            assert app.state.build_service.steps[0].step_id == "validate-json"

    def test_lifespan_loads_previous_builds(self, tmp_path):
        storage_path = tmp_path / "builds"
        storage_path.mkdir()
        (storage_path / HEAD_SHA).write_text(
            json.dumps(
                {"author": "earlier", "title": "Old", "url": "u", "date": "2024-01-01", "log": ""}
            )
        )
        settings = Settings(storage_path=storage_path, checkout_dir=tmp_path)

        with TestClient(create_app(settings)) as client:
            response = client.get("/build/")
        assert "earlier" in response.text


class TestRunBuild:
    """Tests for the background build wrapper."""

    @pytest.mark.asyncio
    async def test_unexpected_error_logged(self, tmp_path, caplog):
        """An unexpected error from a build is logged, never raised."""

        class ExplodingService:
            async def trigger(self, storage, options):
                raise ProcessLookupError("no such process")

        options = PullRequestEvent.model_validate(pull_request_event()).to_trigger_options()

        with caplog.at_level("ERROR", logger="web.routers.webhook"):
            await run_build(ExplodingService(), BuildStorage(tmp_path), options, "PR #3")

        assert "Build for PR #3 failed" in caplog.text
        assert "ProcessLookupError" in caplog.text
