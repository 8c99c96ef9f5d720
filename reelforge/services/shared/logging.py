"""Logging for ReelForge.

Every module logs through :func:`get_logger`, so all records land under the
"reelforge" namespace.  ``settings.yaml`` sets one root level plus optional
per-area overrides, e.g. ``{"tracking": "DEBUG"}`` while chasing a stuck job.
"""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Mapping, Optional

_ROOT = "reelforge"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Held at WARNING unless the root level is DEBUG: they log every request at INFO.
_CHATTY_LIBRARIES = ("httpx", "httpcore")

_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"


def _level(name: str) -> int:
    upper = str(name).upper()
    if upper not in _VALID_LEVELS:
        raise ValueError(f"Invalid log level: {name!r}. Must be one of {_VALID_LEVELS}")
    return getattr(logging, upper)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for one area, e.g. "execution.orchestrator".

    Names that already start with "reelforge" are used as-is.
    """
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    levels: Optional[Mapping[str, str]] = None,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the reelforge root logger.

    Args:
        level: Root level ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL").
        log_file: Optional path to a rotating file log.
        levels: Per-area overrides, keyed like :func:`get_logger` names.
        max_bytes: Max size before rotation (default 50 MB).
        backup_count: Number of backup files to keep.

    Raises:
        ValueError: If any level is not a valid log level string.
    """
    numeric = _level(level)
    overrides = {area: _level(value) for area, value in (levels or {}).items()}

    root = logging.getLogger(_ROOT)
    root.setLevel(numeric)
    root.handlers.clear()
    fmt = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    root.propagate = False

    for area, area_level in overrides.items():
        get_logger(area).setLevel(area_level)

    library_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for library in _CHATTY_LIBRARIES:
        logging.getLogger(library).setLevel(library_level)
