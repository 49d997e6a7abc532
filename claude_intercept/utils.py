#!/usr/bin/env python3
"""
Utility functions for the claude-intercept proxy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone


def now_iso() -> str:
    """Return the current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_base(url: str) -> str:
    """Return the URL with exactly one trailing slash."""
    return url if url.endswith("/") else f"{url}/"


def get_logger(name: str) -> logging.Logger:
    """Return a named logger that emits even if the host hasn't configured logging."""
    logger = logging.getLogger(name)
    if logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        logger.addHandler(handler)
    return logger


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler for the proxy process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
