"""Tests for the process runner (real ``sh`` subprocesses)."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from update_relay.config import RelayConfig
from update_relay.errors import LaunchError, RunnerBusyError
from update_relay.runner import ProcessRunner, UpdateOutcome

# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


class TestLaunch:
    async def test_returns_before_procedure_finishes(self, tmp_path: Path) -> None:
        runner = ProcessRunner("sleep 2; echo done", workdir=tmp_path)
        start = time.monotonic()
        handle = await runner.run()
        assert time.monotonic() - start < 1.0
        assert not handle.done
        assert runner.busy
        await handle.wait()
        assert not runner.busy

    async def test_runs_in_workdir(
        self, tmp_path: Path, write_script: Callable[..., Path]
    ) -> None:
        write_script("echo from-script")
        runner = ProcessRunner("sh ./update.sh", workdir=tmp_path)
        outcome = await (await runner.run()).wait()
        assert outcome.exit_code == 0
        assert outcome.stdout.strip() == "from-script"

    async def test_missing_workdir_is_launch_error(self, tmp_path: Path) -> None:
        runner = ProcessRunner("true", workdir=tmp_path / "does-not-exist")
        with pytest.raises(LaunchError):
            await runner.run()
        assert not runner.busy

    async def test_spawn_oserror_is_launch_error(self) -> None:
        runner = ProcessRunner("true")
        with (
            patch(
                "update_relay.runner.process.asyncio.create_subprocess_shell",
                AsyncMock(side_effect=PermissionError("denied")),
            ),
            pytest.raises(LaunchError, match="denied"),
        ):
            await runner.run()

    async def test_command_override(self, tmp_path: Path) -> None:
        runner = ProcessRunner("echo default", workdir=tmp_path)
        outcome = await (await runner.run("echo override")).wait()
        assert outcome.stdout.strip() == "override"
        assert outcome.command == "echo override"

    async def test_trigger_id_recorded(self) -> None:
        runner = ProcessRunner("true")
        handle = await runner.run(trigger_id="abc123")
        outcome = await handle.wait()
        assert handle.trigger_id == "abc123"
        assert outcome.trigger_id == "abc123"

    def test_from_config(self, make_config: Callable[..., RelayConfig], tmp_path: Path) -> None:
        config = make_config(timeout_seconds=5, concurrency="reject")
        runner = ProcessRunner.from_config(config)
        assert runner._command == "sh ./update.sh"
        assert runner._workdir == tmp_path
        assert runner._timeout == 5
        assert runner._reject_overlap is True


# ---------------------------------------------------------------------------
# Outcome capture
# ---------------------------------------------------------------------------


class TestOutcome:
    async def test_success_captures_stdout(self) -> None:
        runner = ProcessRunner("echo pulled; echo rebuilt")
        outcome = await (await runner.run()).wait()
        assert outcome.success
        assert outcome.exit_code == 0
        assert outcome.stdout == "pulled\nrebuilt\n"
        assert outcome.stderr == ""
        assert outcome.finished_at >= outcome.started_at
        assert outcome.duration_seconds >= 0

    async def test_failure_captures_stderr(self) -> None:
        runner = ProcessRunner("echo 'build broke' >&2; exit 1")
        outcome = await (await runner.run()).wait()
        assert not outcome.success
        assert outcome.exit_code == 1
        assert "build broke" in outcome.stderr

    async def test_failure_logged_with_stderr(self, caplog: pytest.LogCaptureFixture) -> None:
        runner = ProcessRunner("echo 'npm ERR! missing' >&2; exit 1")
        with caplog.at_level(logging.INFO, logger="update_relay.runner.process"):
            await (await runner.run()).wait()
        errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert any("npm ERR! missing" in m for m in errors)

    async def test_success_logs_stdout_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        runner = ProcessRunner("echo all-good")
        with caplog.at_level(logging.INFO, logger="update_relay.runner.process"):
            await (await runner.run()).wait()
        infos = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
        assert any("all-good" in m for m in infos)

    async def test_success_with_stderr_logs_warning(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        runner = ProcessRunner("echo deprecated >&2")
        with caplog.at_level(logging.INFO, logger="update_relay.runner.process"):
            outcome = await (await runner.run()).wait()
        assert outcome.success
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("deprecated" in m for m in warnings)

    async def test_command_not_found_is_execution_failure(self) -> None:
        runner = ProcessRunner("definitely-not-a-command-xyz")
        outcome = await (await runner.run()).wait()
        assert outcome.exit_code == 127
        assert not outcome.success

    async def test_history_and_last_outcome(self) -> None:
        runner = ProcessRunner("true")
        assert runner.last_outcome is None
        await (await runner.run("exit 3")).wait()
        await (await runner.run("true")).wait()
        assert [o.exit_code for o in runner.history] == [3, 0]
        assert runner.last_outcome is not None
        assert runner.last_outcome.exit_code == 0

    async def test_to_dict(self) -> None:
        runner = ProcessRunner("echo hi")
        outcome = await (await runner.run(trigger_id="t1")).wait()
        data = outcome.to_dict()
        assert data["trigger_id"] == "t1"
        assert data["exit_code"] == 0
        assert data["success"] is True
        assert data["stdout"] == "hi\n"
        assert isinstance(data["started_at"], str)
        assert isinstance(outcome, UpdateOutcome)


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------


class TestTimeout:
    async def test_no_timeout_by_default(self) -> None:
        runner = ProcessRunner("sleep 0.3; echo late")
        outcome = await (await runner.run()).wait()
        assert not outcome.timed_out
        assert outcome.stdout.strip() == "late"

    async def test_timeout_terminates_process_group(self) -> None:
        runner = ProcessRunner("echo started; sleep 30", timeout=0.5)
        start = time.monotonic()
        outcome = await (await runner.run()).wait()
        assert time.monotonic() - start < 10
        assert outcome.timed_out
        assert not outcome.success
        assert "started" in outcome.stdout

    async def test_sigkill_after_ignored_sigterm(self) -> None:
        runner = ProcessRunner("trap '' TERM; sleep 30", timeout=0.3)
        with patch("update_relay.runner.process._SIGTERM_GRACE_SECONDS", 0.3):
            outcome = await (await runner.run()).wait()
        assert outcome.timed_out
        assert outcome.exit_code is not None
        assert outcome.exit_code != 0


# ---------------------------------------------------------------------------
# Concurrency policy
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def test_allow_overlapping_runs(self) -> None:
        runner = ProcessRunner("sleep 0.5", concurrency="allow")
        first = await runner.run()
        second = await runner.run()
        assert runner.active_count == 2
        await asyncio.gather(first.wait(), second.wait())
        assert runner.active_count == 0

    async def test_reject_overlapping_run(self) -> None:
        runner = ProcessRunner("sleep 0.5", concurrency="reject")
        first = await runner.run()
        with pytest.raises(RunnerBusyError):
            await runner.run()
        await first.wait()
        # Slot is free again once the first run is recorded.
        await (await runner.run("true")).wait()

    async def test_reject_simultaneous_runs(self) -> None:
        runner = ProcessRunner("sleep 0.5", concurrency="reject")
        results = await asyncio.gather(runner.run(), runner.run(), return_exceptions=True)
        busy = [r for r in results if isinstance(r, RunnerBusyError)]
        launched = [r for r in results if not isinstance(r, BaseException)]
        assert len(busy) == 1
        assert len(launched) == 1
        assert runner.active_count == 1
        await runner.wait_idle()
        assert len(runner.history) == 1

    async def test_failed_launch_releases_slot(self, tmp_path: Path) -> None:
        runner = ProcessRunner("true", workdir=tmp_path / "missing", concurrency="reject")
        with pytest.raises(LaunchError):
            await runner.run()
        assert runner.active_count == 0
        assert not runner.busy

    async def test_wait_idle(self) -> None:
        runner = ProcessRunner("sleep 0.2")
        await runner.run()
        await runner.run()
        await runner.wait_idle()
        assert not runner.busy
        assert len(runner.history) == 2
