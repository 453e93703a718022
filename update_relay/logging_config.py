"""Logging setup for the relay processes.

Console output goes through rich on stderr. When ``LOG_DIR`` is configured a
rotating file receives every record at DEBUG through a background queue, so a
slow disk never stalls the request path.
"""

from __future__ import annotations

import atexit
import logging
import queue
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from update_relay.errors import ConfigError
from update_relay.log_context import ContextFilter

if TYPE_CHECKING:
    from update_relay.config import RelayConfig

LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

LOG_FILE_NAME = "update-relay.log"
LOG_FILE_MAX_BYTES = 2 * 1024 * 1024
LOG_FILE_BACKUPS = 5

CONSOLE_FMT = "%(ctx)s%(message)s"
FILE_FMT = "%(asctime)s %(levelname)-8s %(name)s: %(ctx)s%(message)s"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.server", "asyncio")

logger = logging.getLogger(__name__)

_file_listener: QueueListener | None = None


def parse_level(name: str) -> int:
    """Map a level name such as ``"info"`` to its numeric value.

    Raises:
        ConfigError: *name* is not one of :data:`LEVEL_NAMES`.
    """
    normalized = name.strip().upper()
    if normalized not in LEVEL_NAMES:
        msg = f"Unknown log level {name!r}; expected one of {', '.join(LEVEL_NAMES)}"
        raise ConfigError(msg)
    return logging.getLevelNamesMapping()[normalized]


def _close_file_log() -> None:
    global _file_listener  # noqa: PLW0603
    if _file_listener is not None:
        _file_listener.stop()
        for handler in _file_listener.handlers:
            handler.close()
        _file_listener = None


atexit.register(_close_file_log)


def _file_handler(log_dir: Path, ctx_filter: ContextFilter) -> QueueHandler:
    global _file_listener  # noqa: PLW0603
    log_dir.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    rotating.setFormatter(logging.Formatter(FILE_FMT))

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    _file_listener = QueueListener(records, rotating)
    _file_listener.start()

    handler = QueueHandler(records)
    handler.setLevel(logging.DEBUG)
    handler.addFilter(ctx_filter)
    return handler


def setup_logging(
    level: str = "INFO",
    *,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> None:
    """(Re)configure the root logger. Safe to call more than once.

    Args:
        level: Console level name, case-insensitive.
        verbose: Forces DEBUG regardless of *level*.
        log_dir: Directory for the rotating log file. ``None`` disables it.

    Raises:
        ConfigError: *level* is not a known level name.
    """
    console_level = logging.DEBUG if verbose else parse_level(level)

    _close_file_log()
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    ctx_filter = ContextFilter()
    console = RichHandler(
        console=Console(stderr=True),
        level=console_level,
        show_path=False,
        rich_tracebacks=True,
    )
    console.setFormatter(logging.Formatter(CONSOLE_FMT, datefmt="[%X]"))
    console.addFilter(ctx_filter)
    root.addHandler(console)

    if log_dir is not None:
        root.addHandler(_file_handler(log_dir, ctx_filter))
        root.setLevel(logging.DEBUG)
    else:
        root.setLevel(console_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(
        "Logging configured: console=%s file=%s",
        logging.getLevelName(console_level),
        log_dir / LOG_FILE_NAME if log_dir is not None else "off",
    )


def setup_logging_from_config(config: RelayConfig, *, verbose: bool = False) -> None:
    """Apply ``LOG_LEVEL`` and ``LOG_DIR`` from a loaded configuration."""
    setup_logging(config.log_level, verbose=verbose, log_dir=config.log_dir_path)
