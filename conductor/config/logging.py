"""Logging setup for the conductor process."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER_NAME = "conductor"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call repeatedly; later calls only adjust the level.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(getattr(handler, "_conductor_handler", False) for handler in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._conductor_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    resolved = logging.getLevelName(str(level).strip().upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    return root
