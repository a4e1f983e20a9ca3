"""Shared helpers."""

from .concurrency import cpu_count, create_thread_pool
from .logging_utils import get_logger
from .timing import timed

__all__ = ["cpu_count", "create_thread_pool", "get_logger", "timed"]
