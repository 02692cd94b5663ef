"""
Process-wide logging configuration.

Diagnostics always go to stderr so stdout stays free for JSON output from
the CLI. When a log directory is configured, a rotating combined log and a
separate error log are written there as well.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 5


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``fetchbox`` logger hierarchy.

    Safe to call more than once: handlers installed by a previous call are
    replaced, not duplicated.

    Args:
        level: Log level name or number for the fetchbox loggers.
        log_dir: Directory for ``combined.log`` and ``error.log``. Skipped when None.

    Returns:
        The configured ``fetchbox`` root logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("fetchbox")
    for handler in list(root.handlers):
        if getattr(handler, "_fetchbox_handler", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    _tag(stderr_handler)
    root.addHandler(stderr_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(
            path / "combined.log", maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT
        )
        combined.setFormatter(formatter)
        _tag(combined)
        root.addHandler(combined)

        errors = RotatingFileHandler(
            path / "error.log", maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        _tag(errors)
        root.addHandler(errors)

    root.setLevel(level)
    root.propagate = False
    return root


def _tag(handler: logging.Handler) -> None:
    handler._fetchbox_handler = True  # type: ignore[attr-defined]
