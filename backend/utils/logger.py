"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from backend.utils.config import get_settings


_LOGGER_INITIALIZED = False
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls are no-ops."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()
    logging.basicConfig(level=resolved_level, format=_LOG_FORMAT, stream=sys.stdout)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def kv(**fields: Any) -> str:
    """Render ``key=value`` pairs in a stable order for log lines.

    >>> kv(booking_id=3, status="PENDING")
    'booking_id=3 | status=PENDING'
    """
    return " | ".join(f"{key}={value}" for key, value in fields.items())
