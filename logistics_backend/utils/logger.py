"""Process-wide logging for the logistics backend.

Controllers, services and the repository all log through `get_logger(__name__)`,
so a booking edit reads as one interleaved trail: the request, the reconcile
outcome, skipped deletes and post-commit notification failures.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from logistics_backend.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; `LOG_LEVEL` applies unless `level` is given."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
