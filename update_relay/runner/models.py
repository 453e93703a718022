"""Run records for the update procedure."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class UpdateOutcome:
    """Immutable result of one update procedure run."""

    trigger_id: str
    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    started_at: datetime
    finished_at: datetime
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "command": self.command,
            "exit_code": self.exit_code,
            "success": self.success,
            "timed_out": self.timed_out,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(slots=True)
class RunHandle:
    """A launched update procedure whose outcome arrives later."""

    trigger_id: str
    pid: int
    started_at: datetime
    task: asyncio.Task[UpdateOutcome]

    @property
    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> UpdateOutcome:
        """Wait for the procedure to finish. Never called on the request path."""
        return await asyncio.shield(self.task)
