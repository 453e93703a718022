"""Trigger server: aiohttp ingress that launches the update procedure."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from aiohttp import web

from update_relay.errors import LaunchError, RelayError, RunnerBusyError
from update_relay.gitcheck import check_for_updates
from update_relay.log_context import set_log_context
from update_relay.webhook.auth import SECRET_HEADER, verify_secret

if TYPE_CHECKING:
    from update_relay.config import RelayConfig
    from update_relay.runner.process import ProcessRunner

logger = logging.getLogger(__name__)

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

UPDATE_ROUTE = "/webhook/update"


class TriggerServer:
    """HTTP server accepting authenticated update triggers.

    Routes:
    - ``OPTIONS /webhook/update`` -- CORS pre-flight, no auth.
    - ``POST    /webhook/update`` -- Launch the update procedure (fire-and-forget).
    - ``GET     /webhook/status`` -- Running state and last outcome (auth).
    - ``GET     /webhook/check``  -- ``git fetch`` + behind-upstream check (auth).
    - ``GET     /health``         -- Liveness check.
    """

    def __init__(self, config: RelayConfig, runner: ProcessRunner) -> None:
        self._config = config
        self._runner = runner
        self._app_runner: web.AppRunner | None = None
        self._port: int | None = None

    @property
    def running(self) -> bool:
        return self._app_runner is not None

    @property
    def port(self) -> int | None:
        """Bound port (resolves ``port=0`` to the real one once started)."""
        return self._port

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("OPTIONS", UPDATE_ROUTE, self._handle_preflight)
        app.router.add_post(UPDATE_ROUTE, self._handle_update)
        app.router.add_get("/webhook/status", self._handle_status)
        app.router.add_get("/webhook/check", self._handle_check)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Bind the listening socket and start serving."""
        self._app_runner = web.AppRunner(self.build_app(), access_log=None)
        await self._app_runner.setup()
        site = web.TCPSite(self._app_runner, self._config.host, self._config.port)
        await site.start()
        self._port = _bound_port(self._app_runner, self._config.port)
        logger.info("Webhook server listening on %s:%d", self._config.host, self._port)

    async def stop(self) -> None:
        """Stop accepting requests. Running update procedures are left alone."""
        if self._app_runner:
            await self._app_runner.cleanup()
            self._app_runner = None
            self._port = None
        logger.info("Webhook server stopped")

    # -- Handlers --

    async def _handle_preflight(self, _request: web.Request) -> web.Response:
        return web.Response(status=204, headers=CORS_HEADERS)

    def _authorized(self, request: web.Request) -> bool:
        if verify_secret(request.headers.get(SECRET_HEADER), self._config.secret):
            return True
        logger.warning(
            "Unauthorized webhook attempt received path=%s remote=%s",
            request.path,
            request.remote,
        )
        return False

    async def _handle_update(self, request: web.Request) -> web.Response:
        set_log_context(operation="wh")
        if not self._authorized(request):
            return web.Response(status=401, text="Unauthorized", headers=CORS_HEADERS)

        trigger_id = secrets.token_hex(4)
        set_log_context(trigger_id=trigger_id)
        logger.info("Authorized webhook received. Starting update procedure...")

        try:
            await self._runner.run(trigger_id=trigger_id)
        except RunnerBusyError as exc:
            return web.json_response(
                {"status": "busy", "message": str(exc)}, status=409, headers=CORS_HEADERS
            )
        except LaunchError as exc:
            # The webhook itself worked; only the procedure failed to start.
            return web.json_response(
                {"status": "error", "message": str(exc), "stderr": ""},
                status=200,
                headers=CORS_HEADERS,
            )

        return web.json_response(
            {"status": "success", "message": "Update process initiated.", "stdout": ""},
            status=200,
            headers=CORS_HEADERS,
        )

    async def _handle_status(self, request: web.Request) -> web.Response:
        set_log_context(operation="wh")
        if not self._authorized(request):
            return web.Response(status=401, text="Unauthorized", headers=CORS_HEADERS)
        last = self._runner.last_outcome
        return web.json_response(
            {
                "running": self._runner.busy,
                "active": self._runner.active_count,
                "last_outcome": last.to_dict() if last else None,
            },
            headers=CORS_HEADERS,
        )

    async def _handle_check(self, request: web.Request) -> web.Response:
        set_log_context(operation="wh")
        if not self._authorized(request):
            return web.Response(status=401, text="Unauthorized", headers=CORS_HEADERS)
        try:
            result = await check_for_updates(self._config.workdir_path)
        except RelayError as exc:
            logger.error("Update check failed: %s", exc)
            return web.json_response({"error": str(exc)}, status=500, headers=CORS_HEADERS)
        return web.json_response(
            {"updateAvailable": result.update_available, "statusText": result.status_text},
            headers=CORS_HEADERS,
        )

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})


def _bound_port(app_runner: web.AppRunner, fallback: int) -> int:
    for address in app_runner.addresses:
        if isinstance(address, tuple) and len(address) >= 2:  # noqa: PLR2004
            return int(address[1])
    return fallback
