"""Entry point: python -m update_relay."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from update_relay.config import RelayConfig, load_config
from update_relay.errors import ConfigError, RelayError
from update_relay.logging_config import setup_logging, setup_logging_from_config

logger = logging.getLogger(__name__)

_console = Console()


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _load_config_or_exit(verbose: bool) -> RelayConfig:
    """Read the environment once. A bad config stops the process before any bind."""
    setup_logging(verbose=verbose)
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("FATAL ERROR: %s", exc)  # noqa: TRY400
        sys.exit(1)
    setup_logging_from_config(config, verbose=verbose)
    return config


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def serve(config: RelayConfig) -> None:
    """Run the trigger server until cancelled."""
    from update_relay.runner import ProcessRunner
    from update_relay.webhook import TriggerServer

    runner = ProcessRunner.from_config(config)
    server = TriggerServer(config, runner)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
        if runner.busy:
            logger.warning("Shutting down with %d update run(s) in progress", runner.active_count)


async def serve_forward(config: RelayConfig) -> None:
    """Run the forward server until cancelled."""
    from update_relay.relay import ForwardServer

    server = ForwardServer(config)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def _run_forever(
    coro_factory: Callable[[RelayConfig], Coroutine[Any, Any, None]], config: RelayConfig
) -> None:
    try:
        asyncio.run(coro_factory(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_serve(verbose: bool) -> None:
    config = _load_config_or_exit(verbose)
    _run_forever(serve, config)


def _cmd_forward(verbose: bool) -> None:
    config = _load_config_or_exit(verbose)
    if not config.relay.target_url:
        logger.error("FATAL ERROR: WEBHOOK_URL is not set in the environment.")
        sys.exit(1)
    _run_forever(serve_forward, config)


def _cmd_trigger(verbose: bool) -> None:
    """Fire one trigger at ``WEBHOOK_URL`` and print the parsed response."""
    from update_relay.relay import trigger

    config = _load_config_or_exit(verbose)
    relay = config.relay
    if not relay.target_url:
        logger.error("FATAL ERROR: WEBHOOK_URL is not set in the environment.")
        sys.exit(1)

    result = asyncio.run(
        trigger(
            relay.target_url,
            config.secret,
            source=relay.source,
            timeout=relay.timeout_seconds,
        )
    )
    if not result.ok:
        _console.print(f"[bold red]Trigger failed:[/bold red] {result.error}")
        sys.exit(1)
    _console.print_json(json.dumps(result.data))


def _cmd_check(verbose: bool) -> None:
    """Report whether the working copy is behind its upstream."""
    from update_relay.gitcheck import check_for_updates

    config = _load_config_or_exit(verbose)
    try:
        result = asyncio.run(check_for_updates(config.workdir_path))
    except RelayError as exc:
        _console.print(f"[bold red]Update check failed:[/bold red] {exc}")
        sys.exit(1)
    if result.update_available:
        _console.print("[bold yellow]Update available.[/bold yellow]")
    else:
        _console.print("[green]Up to date.[/green]")
    _console.print(f"[dim]{result.status_text.strip()}[/dim]")


def _print_usage(_verbose: bool = False) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold green", min_width=24)
    table.add_column()
    table.add_row("update-relay", "Run the update webhook server")
    table.add_row("update-relay forward", "Run the forwarding endpoint (POST /trigger-update)")
    table.add_row("update-relay trigger", "Send one trigger to WEBHOOK_URL")
    table.add_row("update-relay check", "Check whether the working copy is behind upstream")
    table.add_row("update-relay help", "Show this message")
    table.add_row("-v, --verbose", "Verbose logging output")

    env = Table(show_header=False, box=None, padding=(0, 2))
    env.add_column(style="bold cyan", min_width=24)
    env.add_column()
    env.add_row("WEBHOOK_SECRET", "Shared secret (required)")
    env.add_row("WEBHOOK_PORT", "Listening port (default 9000)")
    env.add_row("WEBHOOK_URL", "Target for trigger/forward")
    env.add_row("RELAY_HOST", "Forward endpoint bind address (default 127.0.0.1)")
    env.add_row("RELAY_PORT", "Forward endpoint port (default 9001)")
    env.add_row("UPDATE_COMMAND", "Update procedure (default 'sh ./update.sh')")
    env.add_row("UPDATE_TIMEOUT", "Seconds before the procedure is killed (default none)")
    env.add_row("UPDATE_CONCURRENCY", "'allow' or 'reject' overlapping runs")
    env.add_row("LOG_LEVEL", "DEBUG, INFO, WARNING, ERROR or CRITICAL (default INFO)")
    env.add_row("LOG_DIR", "Directory for a rotating log file (default off)")

    _console.print()
    _console.print(
        Panel(table, title="[bold]Commands[/bold]", border_style="blue", padding=(1, 0)),
    )
    _console.print(
        Panel(env, title="[bold]Environment[/bold]", border_style="cyan", padding=(1, 0)),
    )
    _console.print()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

_COMMANDS: dict[str, str] = {
    "serve": "serve",
    "forward": "forward",
    "trigger": "trigger",
    "check": "check",
    "help": "help",
}


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]
    commands = {a for a in args if not a.startswith("-")}
    verbose = "--verbose" in args or "-v" in args

    if "--help" in args or "-h" in args:
        commands.add("help")

    if "help" in commands:
        action = "help"
    else:
        action = next((_COMMANDS[c] for c in commands if c in _COMMANDS), "serve")

    dispatch: dict[str, object] = {
        "serve": _cmd_serve,
        "forward": _cmd_forward,
        "trigger": _cmd_trigger,
        "check": _cmd_check,
        "help": _print_usage,
    }
    dispatch[action](verbose)  # type: ignore[operator]


if __name__ == "__main__":
    main()
