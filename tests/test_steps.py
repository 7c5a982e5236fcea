"""Tests for the verification steps."""

import shutil
import stat
from pathlib import Path

import pytest

from ci_server.config import Settings
from ci_server.steps import (
    STEP_REGISTRY,
    JavaScriptTestsStep,
    PawnCompileStep,
    Step,
    StepExecutionError,
    UnknownStepError,
    ValidateJsonStep,
    resolve_steps,
)
from ci_server.steps.validate_json import find_json_files


class FakeHost:
    """Minimal build standing in for BuildRun."""

    def __init__(self, directory: Path, settings: Settings | None = None):
        self.directory = directory
        self.settings = settings or Settings(checkout_dir=directory)
        self.logs: dict[str, str] = {}

    async def update_log(self, slot: str, text: str) -> None:
        self.logs[slot] = self.logs.get(slot, "") + text


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class TestRegistry:
    """Tests for the step registry."""

    def test_registered_steps(self):
        assert set(STEP_REGISTRY) == {"validate-json", "pawn-compile", "javascript-tests"}

    def test_resolve_in_order(self):
        assert resolve_steps(["pawn-compile", "validate-json"]) == [
            PawnCompileStep,
            ValidateJsonStep,
        ]

    def test_resolve_unknown(self):
        with pytest.raises(UnknownStepError) as exc_info:
            resolve_steps(["validate-json", "lint"])
        assert exc_info.value.step_id == "lint"
        assert exc_info.value.code == "unknown_step"


class TestStepBase:
    """Tests for the Step base class."""

    def test_defaults(self, tmp_path):
        step = ValidateJsonStep(FakeHost(tmp_path))
        assert step.success is True
        assert step.status == "Unknown"
        assert step.id == "validate-json"
        assert step.directory == tmp_path

    def test_settings_from_host(self, tmp_path):
        settings = Settings(checkout_dir=tmp_path)
        step = ValidateJsonStep(FakeHost(tmp_path, settings))
        assert step.settings is settings

    def test_status_output(self, tmp_path):
        step = ValidateJsonStep(FakeHost(tmp_path))
        step.set_status(False, "Broken.")
        output = step.status_output()
        assert output.startswith("\n\nStep finished (took ")
        assert output.endswith("seconds); failure! Broken.")

    @pytest.mark.asyncio
    async def test_log_goes_to_own_slot(self, tmp_path):
        host = FakeHost(tmp_path)
        await ValidateJsonStep(host).log("hello")
        assert host.logs == {"validate-json": "hello"}

    @pytest.mark.asyncio
    async def test_run_not_implemented(self, tmp_path):
        with pytest.raises(NotImplementedError):
            await Step(FakeHost(tmp_path)).run()


class TestFindJsonFiles:
    """Tests for find_json_files function."""

    def test_skips_hidden_directories(self, tmp_path):
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "a.json").write_text("{}")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "b.json").write_text("{}")
        (tmp_path / "c.txt").write_text("")

        assert find_json_files(tmp_path) == [tmp_path / "data" / "a.json"]


class TestValidateJsonStep:
    """Tests for ValidateJsonStep."""

    @pytest.mark.asyncio
    async def test_all_valid(self, tmp_path):
        (tmp_path / "a.json").write_text('{"a": 1}')
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.json").write_text("[1, 2]")
        host = FakeHost(tmp_path)

        step = ValidateJsonStep(host)
        await step.run()

        assert step.success
        assert step.status == "Validated 2 JSON files."
        assert "sub/b.json contains valid JSON data." in host.logs["validate-json"]

    @pytest.mark.asyncio
    async def test_invalid_file(self, tmp_path):
        (tmp_path / "a.json").write_text('{"a": 1}')
        (tmp_path / "broken.json").write_text('{"a": }')
        host = FakeHost(tmp_path)

        step = ValidateJsonStep(host)
        await step.run()

        assert not step.success
        assert step.status == "Validated 1 JSON files, failed 1."
        assert "ERROR: broken.json contains invalid JSON data" in host.logs["validate-json"]

    @pytest.mark.asyncio
    async def test_no_files(self, tmp_path):
        step = ValidateJsonStep(FakeHost(tmp_path))
        await step.run()
        assert step.success
        assert step.status == "Validated 0 JSON files."

    @pytest.mark.asyncio
    async def test_unreadable_file_raises(self, tmp_path):
        (tmp_path / "binary.json").write_bytes(b"\xff\xfe\x00")
        with pytest.raises(StepExecutionError):
            await ValidateJsonStep(FakeHost(tmp_path)).run()


@pytest.mark.skipif(shutil.which("nice") is None, reason="nice not installed")
class TestPawnCompileStep:
    """Tests for PawnCompileStep with a stand-in compiler."""

    def _host(self, tmp_path, body: str) -> FakeHost:
        checkout = tmp_path / "checkout"
        (checkout / "pawn").mkdir(parents=True)
        compiler = write_script(tmp_path / "tools" / "pawncc", body)
        return FakeHost(checkout, Settings(checkout_dir=checkout, compiler_path=compiler))

    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        host = self._host(tmp_path, 'echo "compiling $1"\nhead -c 4096 /dev/zero > lvp.amx\n')

        step = PawnCompileStep(host)
        await step.run()

        assert step.success
        assert step.status == "Successfully compiled lvp.amx (4 kB)."
        assert "compiling lvp.pwn" in host.logs["pawn-compile"]

    @pytest.mark.asyncio
    async def test_compile_errors(self, tmp_path):
        host = self._host(tmp_path, 'echo "lvp.pwn(1) : error 001"\nexit 1\n')

        step = PawnCompileStep(host)
        await step.run()

        assert not step.success
        assert step.status == "Found errors while trying to compile lvp.amx."
        assert "error 001" in host.logs["pawn-compile"]

    @pytest.mark.asyncio
    async def test_missing_output(self, tmp_path):
        host = self._host(tmp_path, "exit 0\n")

        step = PawnCompileStep(host)
        await step.run()
        assert not step.success

    @pytest.mark.asyncio
    async def test_missing_script_directory_raises(self, tmp_path):
        compiler = write_script(tmp_path / "pawncc", "exit 0\n")
        host = FakeHost(tmp_path / "empty", Settings(compiler_path=compiler))
        with pytest.raises(StepExecutionError):
            await PawnCompileStep(host).run()


class TestJavaScriptTestsStep:
    """Tests for JavaScriptTestsStep with a stand-in test runner."""

    def _host(self, tmp_path, body: str) -> FakeHost:
        runner_dir = tmp_path / "out"
        server_dir = tmp_path / "server"
        server_dir.mkdir()
        write_script(runner_dir / "test_runner", body)
        settings = Settings(
            checkout_dir=tmp_path, server_dir=server_dir, test_runner_dir=runner_dir
        )
        return FakeHost(tmp_path, settings)

    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        host = self._host(tmp_path, 'echo "lib=$LD_LIBRARY_PATH"\necho "cwd=$(pwd)"\n')

        step = JavaScriptTestsStep(host)
        await step.run()

        assert step.success
        assert step.status == "Successfully tested the JavaScript code."
        log = host.logs["javascript-tests"]
        assert f"lib={(tmp_path / 'out').resolve()}" in log
        assert "server" in log

    @pytest.mark.asyncio
    async def test_failure(self, tmp_path):
        host = self._host(tmp_path, "echo 'FAIL: 1 test'\nexit 2\n")

        step = JavaScriptTestsStep(host)
        await step.run()

        assert not step.success
        assert step.status == "Found errors while testing the JavaScript code."

    @pytest.mark.asyncio
    async def test_missing_runner_raises(self, tmp_path):
        (tmp_path / "server").mkdir()
        settings = Settings(server_dir=tmp_path / "server", test_runner_dir=tmp_path / "none")
        with pytest.raises(StepExecutionError):
            await JavaScriptTestsStep(FakeHost(tmp_path, settings)).run()
