"""Logging configuration helpers for the exam proctor service."""

from __future__ import annotations

import logging
from logging import Logger

from exam_proctor.config import LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL) -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("exam_proctor")
