from __future__ import annotations

import sys

from loguru import logger

from .config import settings


def configure_logging(level: str | None = None) -> None:
    """Route loguru output to stderr at the configured level."""

    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )
