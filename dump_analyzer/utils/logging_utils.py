"""Logging helpers for the dump analyzer."""

from __future__ import annotations

import logging

from ..config import settings


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger with sensible defaults."""

    logger = logging.getLogger(f"dump_analyzer.{name}")
    if not logger.handlers:
        level = logging.getLevelName(settings.log_level.upper())
        if not isinstance(level, int):
            level = logging.INFO
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
    return logger
