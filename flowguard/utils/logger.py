# flowguard/utils/logger.py
from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "flowguard"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def level_from_env(default: int = logging.INFO) -> int:
    """FLOWGUARD_LOG_LEVEL wins over LOG_LEVEL; unknown names fall back to `default`."""
    name = (os.getenv("FLOWGUARD_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


class _StderrFormatter(logging.Formatter):
    """Colors warnings, errors and debug lines when stderr is a terminal."""

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        if not sys.stderr.isatty():
            return msg
        if record.levelno >= logging.ERROR:
            return f"\033[91m{msg}\033[0m"
        if record.levelno >= logging.WARNING:
            return f"\033[93m{msg}\033[0m"
        if record.levelno <= logging.DEBUG:
            return f"\033[90m{msg}\033[0m"
        return msg


def configure_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    (Re)configure the `flowguard` logger.

    Records go to stderr so that stdout only carries CLI reports. With `log_file`
    they are also written to a rotating file (5 MB, 3 backups).
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else None
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(level if level is not None else level_from_env())

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(_StderrFormatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(stream)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)
    return logger


def get_logger(child: str) -> logging.Logger:
    base = logging.getLogger(ROOT_LOGGER)
    if not base.handlers:
        configure_logging()
    return base.getChild(child)
