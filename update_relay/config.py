"""Application configuration, read once from the environment at startup."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from update_relay.errors import ConfigError
from update_relay.logging_config import LEVEL_NAMES

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_COMMAND = "sh ./update.sh"


class ForwardConfig(BaseModel):
    """Settings for the outbound relay and its forwarding endpoint."""

    target_url: str = ""
    # The forward endpoint has no authentication of its own.
    host: str = "127.0.0.1"
    port: int = Field(default=9001, ge=0, le=65535)
    source: str = "update-relay"
    timeout_seconds: float = 30.0

    model_config = {"frozen": True}


class RelayConfig(BaseModel):
    """Top-level configuration shared by the trigger server, runner and relay."""

    secret: str
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=9000, ge=0, le=65535)
    update_command: str = DEFAULT_UPDATE_COMMAND
    workdir: str = ""
    timeout_seconds: float | None = None
    concurrency: Literal["allow", "reject"] = "allow"
    log_level: str = "INFO"
    log_dir: str = ""
    relay: ForwardConfig = Field(default_factory=ForwardConfig)

    model_config = {"frozen": True}

    @field_validator("secret")
    @classmethod
    def _secret_not_empty(cls, value: str) -> str:
        if not value:
            msg = "secret must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def _timeout_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in LEVEL_NAMES:
            msg = f"must be one of {', '.join(LEVEL_NAMES)}"
            raise ValueError(msg)
        return normalized

    @property
    def workdir_path(self) -> Path | None:
        return Path(self.workdir).expanduser() if self.workdir else None

    @property
    def log_dir_path(self) -> Path | None:
        return Path(self.log_dir).expanduser() if self.log_dir else None


# env var -> field name (top level)
_ENV_FIELDS: dict[str, str] = {
    "WEBHOOK_HOST": "host",
    "WEBHOOK_PORT": "port",
    "UPDATE_COMMAND": "update_command",
    "UPDATE_WORKDIR": "workdir",
    "UPDATE_TIMEOUT": "timeout_seconds",
    "UPDATE_CONCURRENCY": "concurrency",
    "LOG_LEVEL": "log_level",
    "LOG_DIR": "log_dir",
}

_ENV_RELAY_FIELDS: dict[str, str] = {
    "WEBHOOK_URL": "target_url",
    "RELAY_HOST": "host",
    "RELAY_PORT": "port",
    "RELAY_SOURCE": "source",
    "RELAY_TIMEOUT": "timeout_seconds",
}


def _validation_summary(exc: ValidationError) -> str:
    """Render validation errors without echoing input values (the secret is one)."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def load_config(environ: Mapping[str, str] | None = None) -> RelayConfig:
    """Build the configuration from *environ* (defaults to ``os.environ``).

    Raises:
        ConfigError: ``WEBHOOK_SECRET`` is unset or empty, or a value is invalid.
    """
    env = os.environ if environ is None else environ

    secret = env.get("WEBHOOK_SECRET", "")
    if not secret:
        msg = "WEBHOOK_SECRET is not set in the environment"
        raise ConfigError(msg)

    data: dict[str, object] = {"secret": secret}
    for var, field in _ENV_FIELDS.items():
        value = env.get(var, "").strip()
        if value:
            data[field] = value

    relay: dict[str, object] = {}
    for var, field in _ENV_RELAY_FIELDS.items():
        value = env.get(var, "").strip()
        if value:
            relay[field] = value
    if relay:
        data["relay"] = relay

    try:
        config = RelayConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid configuration: {_validation_summary(exc)}"
        raise ConfigError(msg) from exc

    logger.debug(
        "Config loaded: port=%d command=%r concurrency=%s timeout=%s",
        config.port,
        config.update_command,
        config.concurrency,
        config.timeout_seconds,
    )
    return config
