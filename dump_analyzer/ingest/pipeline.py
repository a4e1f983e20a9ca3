"""High-level ingest orchestration for thread-dump captures."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb

from ..analysis.cache import call_trees
from ..analysis.call_tree import build_call_tree_parallel
from ..analysis.codec import Encoder, StackCompressor
from ..analysis.interner import StringInterner
from ..config import settings
from ..runtime.tasks import ExecuteContext
from ..search.method_index import MethodSearchIndex
from ..storage import repository
from ..storage.repository import SourceFileRow, StackRow, ThreadRow
from ..utils.concurrency import cpu_count
from ..utils.logging_utils import get_logger
from ..utils.timing import timed
from .files import FileType, collect_source_files, remove_work_dir
from .thread_dump import ParsedDump, Thread, parse_thread_dumps

LOGGER = get_logger("ingest.pipeline")


def _progress(context: Optional[ExecuteContext], value: float, message: str) -> None:
    if context is None:
        LOGGER.debug("Ingest progress %.0f%%: %s", value, message)
        return
    context.update_progress(value, message)


def ingest_dump(
    source: Path,
    *,
    connection: duckdb.DuckDBPyConnection,
    context: Optional[ExecuteContext] = None,
    work_root: Optional[Path] = None,
    workers: Optional[int] = None,
) -> Dict[str, Any]:
    """Ingest a directory, archive or single dump file into a new workspace."""

    path = Path(source)
    root = Path(work_root) if work_root is not None else settings.work_root
    worker_count = workers or cpu_count()

    timings: Dict[str, float] = {}

    def record(section: str, seconds: float) -> None:
        timings[section] = timings.get(section, 0.0) + seconds

    overall_start = time.perf_counter()
    work_dir: Optional[Path] = None
    workspace_id: Optional[str] = None
    LOGGER.info("Starting ingest for %s (workers=%d)", path, worker_count)
    try:
        _progress(context, 1, f"reading {path.name}")
        workspace = repository.create_workspace(connection, str(path))
        workspace_id = workspace.id
        work_dir = root / workspace.id

        with timed("expand_seconds", record):
            files = collect_source_files(path, work_dir)
        dump_files = [item for item in files if item.file_type is FileType.THREAD_DUMP]
        _progress(context, 5, f"found {len(files)} file(s), {len(dump_files)} thread dump(s)")

        with timed("parse_seconds", record):
            parsed = parse_thread_dumps([item.path for item in dump_files], max_workers=worker_count)
        _progress(context, 15, "parsed thread dumps")

        file_rows = [
            SourceFileRow(
                id=item.id,
                workspace=workspace.id,
                file_path=str(item.path),
                file_type=item.file_type.value,
                captured_at=item.captured_at,
            )
            for item in files
        ]
        with timed("write_files_seconds", record):
            repository.write_rows(connection, "source_files", file_rows, workers=worker_count)
        _progress(context, 30, f"recorded {len(file_rows)} file(s)")

        encoder = Encoder()
        compressor = StackCompressor(encoder)
        thread_rows: List[ThreadRow] = []
        stack_rows: List[StackRow] = []
        threads: List[Thread] = []
        with timed("derive_seconds", record):
            for item, dump in zip(dump_files, parsed):
                for thread in dump.threads:
                    row, stacks = repository.thread_rows(
                        thread,
                        workspace=workspace.id,
                        file_id=item.id,
                        compressor=compressor,
                    )
                    thread_rows.append(row)
                    stack_rows.extend(stacks)
                    threads.append(thread)

        with timed("write_threads_seconds", record):
            repository.write_rows(connection, "thread_info", thread_rows, workers=worker_count)
        _progress(context, 50, f"stored {len(thread_rows)} thread(s)")

        with timed("write_stacks_seconds", record):
            repository.write_rows(connection, "thread_stack", stack_rows, workers=worker_count)
        _progress(context, 65, f"stored {len(stack_rows)} frame(s)")

        dictionary = repository.dictionary_rows(workspace.id, encoder)
        with timed("write_dictionary_seconds", record):
            repository.write_rows(connection, "stack_dictionary", dictionary, workers=worker_count)
        _progress(context, 80, f"stored {len(dictionary)} dictionary entries")

        with timed("index_seconds", record):
            indexed = MethodSearchIndex(connection, workspace.id).index_many(
                row.value for row in dictionary
            )
        with timed("call_tree_seconds", record):
            forest = build_call_tree_parallel(
                threads, workers=worker_count, interner=StringInterner()
            )
            call_trees.put(workspace.id, forest)
        _progress(context, 90, "indexed methods and built call tree")

        failures = [failure.as_dict() for dump in parsed for failure in dump.failures]
        duration = time.perf_counter() - overall_start
        telemetry: Dict[str, Any] = {
            "workspace": workspace.id,
            "source": str(path),
            "files": len(files),
            "thread_dumps": len(dump_files),
            "threads": len(thread_rows),
            "frames": len(stack_rows),
            "dictionary_entries": len(dictionary),
            "indexed_methods": indexed,
            "call_tree_roots": len(forest),
            "system_threads": sum(dump.skipped for dump in parsed),
            "failures": failures,
            "failure_counts": summarize_failures(parsed),
            "duration_seconds": duration,
            "timings": timings,
        }
        _progress(context, 100, "done")
        LOGGER.info(
            "Ingest complete for %s: workspace=%s files=%d threads=%d frames=%d failed=%d in %.2fs",
            path,
            workspace.id,
            len(files),
            len(thread_rows),
            len(stack_rows),
            len(failures),
            duration,
        )
        return telemetry
    except Exception as exc:
        LOGGER.exception("Ingest failed for %s", path)
        if workspace_id is not None:
            _discard_workspace(connection, workspace_id)
        if context is not None:
            context.fail(str(exc))
        raise
    finally:
        if work_dir is not None:
            remove_work_dir(work_dir)


def _discard_workspace(connection: duckdb.DuckDBPyConnection, workspace_id: str) -> None:
    """Drop the rows and cached tree of a workspace whose ingest failed."""

    call_trees.discard(workspace_id)
    try:
        repository.delete_workspace(connection, workspace_id)
    except duckdb.Error:
        LOGGER.warning("Could not remove partial workspace %s", workspace_id, exc_info=True)
        return
    LOGGER.info("Removed partial workspace %s", workspace_id)


def summarize_failures(parsed: List[ParsedDump]) -> Dict[str, int]:
    """Count dropped stanzas per error type."""

    counts: Dict[str, int] = {}
    for dump in parsed:
        for failure in dump.failures:
            name = type(failure.error).__name__
            counts[name] = counts.get(name, 0) + 1
    return counts
