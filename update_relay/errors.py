"""Project-level exception hierarchy."""

from __future__ import annotations


class RelayError(Exception):
    """Base for all update-relay exceptions."""


class ConfigError(RelayError):
    """Configuration is missing or invalid. Fatal at startup."""


class LaunchError(RelayError):
    """The update procedure could not be spawned."""


class RunnerBusyError(RelayError):
    """An update is already running and overlapping runs are rejected."""


class TriggerError(RelayError):
    """Outbound trigger call failed."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body
