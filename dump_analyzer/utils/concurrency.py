"""Concurrency helpers shared by parsing, tree building and bulk inserts."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from ..config import settings


def cpu_count() -> int:
    """Logical CPU count of the host, overridable through settings."""

    if settings.ingest_workers > 0:
        return settings.ingest_workers
    return os.cpu_count() or 1


def create_thread_pool(
    max_workers: Optional[int] = None, *, prefix: str = "dump-analyzer"
) -> ThreadPoolExecutor:
    """Build a thread pool with a project-specific default name prefix."""

    return ThreadPoolExecutor(
        max_workers=max_workers or cpu_count(), thread_name_prefix=prefix
    )
