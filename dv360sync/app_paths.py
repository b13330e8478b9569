"""Locations of DV360 Sync's per-user files.

``DV360SYNC_HOME`` overrides the base directory. Otherwise the Windows
``LOCALAPPDATA``/``APPDATA`` folders are used, falling back to ``~/.dv360sync``.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("DV360SYNC_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "DV360Sync"
    return Path.home().resolve() / ".dv360sync"


APP_DIR: Path = _detect_base_directory()
LOG_DIR: Path = APP_DIR / "logs"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"


def _within(directory: Path, parts: Iterable[str]) -> Path:
    target = directory.joinpath(*parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def logs_path(*parts: str) -> Path:
    """Return a path inside :data:`LOG_DIR`, creating its parent directory."""

    return _within(LOG_DIR, parts)


__all__ = ["APP_DIR", "CREDENTIALS_DIR", "LOG_DIR", "logs_path"]
