"""Logging context: ContextVar-based log enrichment for async operations.

Every log record is enriched with a ``[op:trigger]`` prefix via a
`ContextFilter` attached to the root logger handlers.

Operation codes: ``wh`` (trigger endpoint), ``run`` (process runner),
``relay`` (outbound relay / forward server).
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

ctx_operation: ContextVar[str | None] = ContextVar("ctx_operation", default=None)
ctx_trigger_id: ContextVar[str | None] = ContextVar("ctx_trigger_id", default=None)


class ContextFilter(logging.Filter):
    """Inject ContextVar values into every LogRecord as ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        op = ctx_operation.get(None)
        trigger = ctx_trigger_id.get(None)
        parts: list[str] = []
        if op:
            parts.append(op)
        if trigger:
            parts.append(trigger)
        record.ctx = f"[{':'.join(parts)}] " if parts else ""
        return True


def set_log_context(
    *,
    operation: str | None = None,
    trigger_id: str | None = None,
) -> None:
    """Set logging context for the current asyncio task.

    Each ``asyncio.create_task()`` copies the current context, so the
    background watcher of a run inherits the trigger id of its request.
    """
    if operation is not None:
        ctx_operation.set(operation)
    if trigger_id is not None:
        ctx_trigger_id.set(trigger_id)
