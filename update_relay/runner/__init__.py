"""Process runner: fire-and-forget execution of the update procedure."""

from update_relay.runner.models import RunHandle, UpdateOutcome
from update_relay.runner.process import ProcessRunner

__all__ = ["ProcessRunner", "RunHandle", "UpdateOutcome"]
