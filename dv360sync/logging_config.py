"""Log file setup for DV360 Sync."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dv360sync import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "dv360sync.log"

_LOG_PATH: Optional[Path] = None


def _has_file_handler(logger: logging.Logger, log_path: Path) -> bool:
    target = os.path.abspath(log_path)
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )


def configure_logging(level: int = logging.INFO, path: Optional[Path] = None) -> Path:
    """Send log records of every module to the DV360 Sync log file.

    Parameters
    ----------
    level:
        Minimum level for the root logger. ``logging.INFO`` records each API
        call and row outcome; request bodies are only logged at ``DEBUG``.
    path:
        Explicit log file. Defaults to ``<app dir>/logs/dv360sync.log``.

    Calling this again is harmless: the file handler is installed once per
    path.
    """

    global _LOG_PATH

    if path is None and _LOG_PATH is not None:
        return _LOG_PATH

    log_path = Path(path) if path is not None else app_paths.logs_path(LOG_FILE_NAME)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(min(root_logger.level, level) if root_logger.handlers else level)

    if not _has_file_handler(root_logger, log_path):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    _LOG_PATH = log_path
    root_logger.debug("Logging configured. Writing to %s", log_path)
    return log_path


__all__ = ["LOG_FILE_NAME", "LOG_FORMAT", "configure_logging"]
