"""Process runner: launches the update procedure and observes it in the background."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
import signal
import sys
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from update_relay.errors import LaunchError, RunnerBusyError
from update_relay.log_context import set_log_context
from update_relay.runner.models import RunHandle, UpdateOutcome

if TYPE_CHECKING:
    from update_relay.config import RelayConfig

logger = logging.getLogger(__name__)

_SIGTERM_GRACE_SECONDS = 5.0
_HISTORY_SIZE = 20

_IS_WINDOWS = sys.platform == "win32"


def _decode(data: bytes | None) -> str:
    return data.decode(errors="replace") if data else ""


class ProcessRunner:
    """Spawn the update procedure through the shell without waiting for it.

    ``run()`` returns once the child exists. A watcher task collects the full
    stdout/stderr after exit, logs the result and records an `UpdateOutcome`.
    Nothing about the outcome flows back to whoever called ``run()``.
    """

    def __init__(
        self,
        command: str,
        *,
        workdir: Path | None = None,
        timeout: float | None = None,
        concurrency: str = "allow",
    ) -> None:
        self._command = command
        self._workdir = workdir
        self._timeout = timeout
        self._reject_overlap = concurrency == "reject"
        self._active: dict[str, RunHandle] = {}
        self._launching = 0  # spawns in progress, not yet in _active
        self._history: deque[UpdateOutcome] = deque(maxlen=_HISTORY_SIZE)
        self._background_tasks: set[asyncio.Task[UpdateOutcome]] = set()

    @classmethod
    def from_config(cls, config: RelayConfig) -> ProcessRunner:
        return cls(
            config.update_command,
            workdir=config.workdir_path,
            timeout=config.timeout_seconds,
            concurrency=config.concurrency,
        )

    # -- State (side channel for the status endpoint) --

    @property
    def busy(self) -> bool:
        return self.active_count > 0

    @property
    def active_count(self) -> int:
        return len(self._active) + self._launching

    @property
    def last_outcome(self) -> UpdateOutcome | None:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> tuple[UpdateOutcome, ...]:
        return tuple(self._history)

    # -- Launch --

    async def run(self, command: str | None = None, *, trigger_id: str | None = None) -> RunHandle:
        """Launch *command* (default: the configured update command).

        Raises:
            RunnerBusyError: A run is in flight and overlapping runs are rejected.
            LaunchError: The shell could not be spawned.
        """
        cmd = command or self._command
        trigger_id = trigger_id or secrets.token_hex(4)

        # Check and reservation happen before the first await.
        in_flight = self.active_count
        if in_flight:
            if self._reject_overlap:
                logger.warning("Update rejected: %d run(s) already in progress", in_flight)
                msg = "An update is already in progress."
                raise RunnerBusyError(msg)
            logger.warning(
                "Starting overlapping update while %d run(s) in progress", in_flight
            )

        started_at = datetime.now(UTC)
        self._launching += 1
        try:
            process = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workdir) if self._workdir else None,
                start_new_session=not _IS_WINDOWS,
            )
        except OSError as exc:
            self._launching -= 1
            logger.error("Error executing update procedure %r: %s", cmd, exc)
            raise LaunchError(str(exc)) from exc
        except BaseException:
            self._launching -= 1
            raise

        logger.info("Update procedure started pid=%s command=%r", process.pid, cmd)
        task = asyncio.create_task(self._watch(process, cmd, trigger_id, started_at))
        handle = RunHandle(trigger_id=trigger_id, pid=process.pid, started_at=started_at, task=task)
        self._launching -= 1
        self._active[trigger_id] = handle
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return handle

    async def wait_idle(self) -> None:
        """Wait until every launched run has been recorded."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # -- Background observation --

    async def _watch(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        trigger_id: str,
        started_at: datetime,
    ) -> UpdateOutcome:
        set_log_context(operation="run", trigger_id=trigger_id)
        timed_out = False
        stdout = stderr = ""
        try:
            communicate = asyncio.ensure_future(process.communicate())
            try:
                out, err = await asyncio.wait_for(asyncio.shield(communicate), self._timeout)
            except TimeoutError:
                timed_out = True
                logger.error(
                    "Update procedure exceeded %.0fs timeout, terminating pid=%s",
                    self._timeout,
                    process.pid,
                )
                await _terminate(process)
                out, err = await communicate
            stdout, stderr = _decode(out), _decode(err)
        except Exception as exc:
            logger.exception("Failed to collect output of update procedure pid=%s", process.pid)
            stderr = str(exc)
        finally:
            self._active.pop(trigger_id, None)

        outcome = UpdateOutcome(
            trigger_id=trigger_id,
            command=command,
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            timed_out=timed_out,
        )
        self._history.append(outcome)
        _log_outcome(outcome)
        return outcome


def _log_outcome(outcome: UpdateOutcome) -> None:
    if outcome.success:
        if outcome.stderr:
            logger.warning("Update script stderr: %s", outcome.stderr.rstrip())
        logger.info(
            "Update script finished in %.1fs, stdout: %s",
            outcome.duration_seconds,
            outcome.stdout.rstrip(),
        )
        return
    logger.error(
        "Update script failed exit=%s timed_out=%s after %.1fs",
        outcome.exit_code,
        outcome.timed_out,
        outcome.duration_seconds,
    )
    if outcome.stderr:
        logger.error("Update script stderr: %s", outcome.stderr.rstrip())
    if outcome.stdout:
        logger.info("Update script stdout: %s", outcome.stdout.rstrip())


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Signal the child's whole session so grandchildren holding the pipes die too."""
    with contextlib.suppress(ProcessLookupError):
        if _IS_WINDOWS:
            process.terminate()
        else:
            os.killpg(process.pid, sig)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """SIGTERM -> grace period -> SIGKILL."""
    if process.returncode is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=_SIGTERM_GRACE_SECONDS)
    except TimeoutError:
        logger.warning("pid=%s ignored SIGTERM, force killing", process.pid)
        _signal_group(process, signal.SIGKILL if not _IS_WINDOWS else signal.SIGTERM)
        await process.wait()
