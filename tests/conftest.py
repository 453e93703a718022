"""Shared test fixtures."""

from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from update_relay.config import RelayConfig

SECRET = "s3cr3t"


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., RelayConfig]:
    """Factory for a config bound to an ephemeral port inside *tmp_path*."""

    def _make(**overrides: Any) -> RelayConfig:
        data: dict[str, Any] = {
            "secret": SECRET,
            "host": "127.0.0.1",
            "port": 0,
            "update_command": "sh ./update.sh",
            "workdir": str(tmp_path),
        }
        data.update(overrides)
        return RelayConfig.model_validate(data)

    return _make


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable shell script into *tmp_path*."""

    def _write(body: str, name: str = "update.sh") -> Path:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    return _write
