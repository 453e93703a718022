"""Forward server: HTTP endpoint that relays a trigger to the update webhook."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from update_relay.errors import TriggerError
from update_relay.log_context import set_log_context
from update_relay.relay.client import trigger
from update_relay.webhook.server import CORS_HEADERS

if TYPE_CHECKING:
    from update_relay.config import RelayConfig

logger = logging.getLogger(__name__)

FORWARD_ROUTE = "/trigger-update"


class ForwardServer:
    """Accepts a local trigger and forwards it to ``relay.target_url``.

    Used where the caller (a scheduled job, a browser admin page) must not
    hold the shared secret itself.
    """

    def __init__(self, config: RelayConfig) -> None:
        self._config = config
        self._app_runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("OPTIONS", FORWARD_ROUTE, self._handle_preflight)
        app.router.add_post(FORWARD_ROUTE, self._handle_forward)
        return app

    async def start(self) -> None:
        relay = self._config.relay
        self._app_runner = web.AppRunner(self.build_app(), access_log=None)
        await self._app_runner.setup()
        site = web.TCPSite(self._app_runner, relay.host, relay.port)
        await site.start()
        logger.info("Forward server listening on %s:%d", relay.host, relay.port)

    async def stop(self) -> None:
        if self._app_runner:
            await self._app_runner.cleanup()
            self._app_runner = None
        logger.info("Forward server stopped")

    async def _handle_preflight(self, _request: web.Request) -> web.Response:
        return web.Response(status=204, headers=CORS_HEADERS)

    async def _handle_forward(self, _request: web.Request) -> web.Response:
        set_log_context(operation="relay")
        relay = self._config.relay
        try:
            if not relay.target_url:
                msg = "WEBHOOK_URL and WEBHOOK_SECRET must be set."
                raise TriggerError(msg)
            result = await trigger(
                relay.target_url,
                self._config.secret,
                source=relay.source,
                timeout=relay.timeout_seconds,
            )
            details = result.unwrap()
        except TriggerError as exc:
            return web.json_response({"error": str(exc)}, status=500, headers=CORS_HEADERS)

        return web.json_response(
            {"success": True, "message": "Update initiated.", "details": details},
            headers=CORS_HEADERS,
        )
