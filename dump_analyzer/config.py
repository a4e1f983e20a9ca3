"""Configuration primitives for the dump analyzer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


def _env_flag(name: str, *, default: bool) -> bool:
    """Interpret common truthy/falsey environment values."""

    value = os.environ.get(name)
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration defaults for ingest, storage and search."""

    database_path: str = os.environ.get("DUMP_ANALYZER_DB", "dump_analyzer.duckdb")
    work_root: Path = Path(os.environ.get("DUMP_ANALYZER_WORK_ROOT", "work"))
    chunk_rows: int = int(os.environ.get("DUMP_ANALYZER_CHUNK_ROWS", "1000"))
    ingest_workers: int = int(os.environ.get("DUMP_ANALYZER_WORKERS", "0"))
    tune_bulk_load: bool = _env_flag("DUMP_ANALYZER_TUNE_BULK_LOAD", default=True)
    keep_extracted: bool = _env_flag("DUMP_ANALYZER_KEEP_EXTRACTED", default=False)
    thread_dump_keyword: str = os.environ.get("DUMP_ANALYZER_THREAD_DUMP_KEYWORD", "jstack")
    cpu_top_keyword: str = os.environ.get("DUMP_ANALYZER_CPU_TOP_KEYWORD", "top")
    cpu_thread_keyword: str = os.environ.get("DUMP_ANALYZER_CPU_THREAD_KEYWORD", "thread_cpu")
    gc_keyword: str = os.environ.get("DUMP_ANALYZER_GC_KEYWORD", "gc")
    gc_util_keyword: str = os.environ.get("DUMP_ANALYZER_GC_UTIL_KEYWORD", "gcutil")
    search_limit: int = int(os.environ.get("DUMP_ANALYZER_SEARCH_LIMIT", "10"))
    search_fuzziness: int = int(os.environ.get("DUMP_ANALYZER_SEARCH_FUZZINESS", "1"))
    parquet_compression: str = os.environ.get("DUMP_ANALYZER_PARQUET_COMPRESSION", "snappy")
    log_level: str = os.environ.get("DUMP_ANALYZER_LOG_LEVEL", "INFO")


settings = Settings()
