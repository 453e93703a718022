"""Outbound trigger: call a remote trigger endpoint once on behalf of another system."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from update_relay.errors import TriggerError
from update_relay.log_context import set_log_context
from update_relay.webhook.auth import SECRET_HEADER

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class TriggerResult:
    """Outcome of a single relay call. ``data`` is set only when ``ok``."""

    ok: bool
    status: int | None = None
    data: Any = None
    error: str = ""
    body: str = ""

    def unwrap(self) -> Any:
        """Return the parsed response, or raise `TriggerError` for a failed call."""
        if not self.ok:
            raise TriggerError(self.error, status=self.status, body=self.body)
        return self.data


async def trigger(
    target_url: str,
    secret: str,
    *,
    source: str = "update-relay",
    timeout: float = _DEFAULT_TIMEOUT,
) -> TriggerResult:
    """POST a trigger to *target_url*. Single attempt, no retry.

    Non-2xx responses, network errors and non-JSON bodies all come back as
    ``ok=False``; the response body text is kept for diagnosis.
    """
    set_log_context(operation="relay")
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    headers = {"Content-Type": "application/json", SECRET_HEADER: secret}
    logger.info("Relaying update trigger to %s", target_url)
    try:
        async with (
            aiohttp.ClientSession(timeout=client_timeout) as session,
            session.post(target_url, json={"trigger": source}, headers=headers) as resp,
        ):
            text = await resp.text()
            if not 200 <= resp.status < 300:  # noqa: PLR2004
                error = f"Webhook server responded with {resp.status}: {text}"
                logger.warning("Relay failed: %s", error)
                return TriggerResult(ok=False, status=resp.status, error=error, body=text)
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                error = f"Webhook server returned invalid JSON: {text[:200]}"
                logger.warning("Relay failed: %s", error)
                return TriggerResult(ok=False, status=resp.status, error=error, body=text)
    except (aiohttp.ClientError, TimeoutError) as exc:
        error = f"Webhook server unreachable: {str(exc) or type(exc).__name__}"
        logger.warning("Relay failed: %s", error)
        return TriggerResult(ok=False, error=error)

    logger.info("Relay succeeded status=%d", resp.status)
    return TriggerResult(ok=True, status=resp.status, data=data, body=text)
