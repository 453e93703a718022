"""Update availability check: ``git fetch`` followed by ``git status -uno``."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from update_relay.errors import RelayError

logger = logging.getLogger(__name__)

_BEHIND_MARKER = "Your branch is behind"


@dataclass(frozen=True, slots=True)
class UpdateCheck:
    """Result of comparing the working copy against its upstream."""

    update_available: bool
    status_text: str


async def _git(repo_dir: Path | None, *args: str) -> tuple[int, str, str]:
    """Run one git command and return ``(exit code, stdout, stderr)``."""
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=str(repo_dir) if repo_dir else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, "LC_ALL": "C"},
    )
    stdout, stderr = await proc.communicate()
    out = stdout.decode(errors="replace") if stdout else ""
    err = stderr.decode(errors="replace").strip() if stderr else ""
    return proc.returncode or 0, out, err


async def check_for_updates(repo_dir: Path | None = None) -> UpdateCheck:
    """Fetch from the remote and report whether the local branch is behind.

    A failing ``git fetch`` is logged and the check continues against the
    last known remote state; a failing ``git status`` raises `RelayError`.
    Only the stdout of ``git status`` ends up in ``status_text``.
    """
    try:
        code, _, err = await _git(repo_dir, "fetch")
        if code != 0:
            logger.warning("git fetch failed (exit=%d): %s", code, err)
        elif err:
            logger.debug("git fetch: %s", err)
        code, status_text, err = await _git(repo_dir, "status", "-uno")
    except OSError as exc:
        msg = f"git is not available: {exc}"
        raise RelayError(msg) from exc

    if code != 0:
        msg = f"git status failed (exit={code}): {err or status_text.strip()}"
        raise RelayError(msg)
    if err:
        logger.warning("git status: %s", err)

    available = _BEHIND_MARKER in status_text
    logger.info("Update check: update_available=%s", available)
    return UpdateCheck(update_available=available, status_text=status_text)
