"""Parquet export of a stored workspace."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import duckdb
import pyarrow as pa
import pyarrow.parquet as pq

from ..config import settings
from ..utils.logging_utils import get_logger

LOGGER = get_logger("storage.export")

EXPORT_BATCH_ROWS = 1000

THREAD_SCHEMA = pa.schema(
    [
        ("id", pa.string()),
        ("file_path", pa.string()),
        ("thread_id", pa.string()),
        ("thread_name", pa.string()),
        ("daemon", pa.bool_()),
        ("prio", pa.int32()),
        ("os_prio", pa.int32()),
        ("tid", pa.uint64()),
        ("nid", pa.uint64()),
        ("address", pa.string()),
        ("thread_status", pa.string()),
        ("start_line", pa.int64()),
        ("end_line", pa.int64()),
        ("top_method", pa.string()),
    ]
)

FRAME_SCHEMA = pa.schema(
    [
        ("thread_id", pa.string()),
        ("frame_index", pa.int32()),
        ("class_name", pa.string()),
        ("method_name", pa.string()),
        ("method_line", pa.int32()),
        ("file_name", pa.string()),
        ("method_code", pa.uint32()),
        ("frame_kind", pa.string()),
        ("frame_address", pa.uint64()),
        ("monitor_action", pa.string()),
    ]
)

_THREAD_QUERY = """
    SELECT t.id, f.file_path, t.thread_id, t.thread_name, t.daemon, t.prio,
           t.os_prio, t.tid, t.nid, t.address, t.thread_status, t.start_line,
           t.end_line, t.top_method
    FROM thread_info t
    LEFT JOIN source_files f ON t.file_id = f.id
    WHERE t.workspace = ?
    ORDER BY f.file_path, t.start_line
"""

_FRAME_QUERY = """
    SELECT thread_id, frame_index, class_name, method_name, method_line,
           file_name, method_code, frame_kind, frame_address, monitor_action
    FROM thread_stack
    WHERE workspace = ?
    ORDER BY thread_id, frame_index
"""


class ParquetBatchWriter:
    """Minimal batching wrapper around :class:`pyarrow.parquet.ParquetWriter`."""

    def __init__(self, destination: Path, schema: pa.Schema, *, compression: str) -> None:
        self.destination = Path(destination)
        self.schema = schema
        self.compression = compression
        self._writer: Optional[pq.ParquetWriter] = None
        self._rows_written = 0

    def write_rows(self, rows: list[Dict[str, Any]]) -> None:
        if not rows:
            return
        table = pa.Table.from_pylist(rows, schema=self.schema)
        if self._writer is None:
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            self._writer = pq.ParquetWriter(
                self.destination, self.schema, compression=self.compression
            )
        self._writer.write_table(table)
        self._rows_written += int(table.num_rows)
        LOGGER.debug(
            "Appended %d rows to %s (total=%d)",
            table.num_rows,
            self.destination,
            self._rows_written,
        )

    def finalize(self) -> Dict[str, Any]:
        if self._writer is not None:
            self._writer.close()
        else:
            # Nothing was written; still leave a readable, empty file behind.
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            pq.write_table(self.schema.empty_table(), self.destination, compression=self.compression)
        return {"rows_written": self._rows_written, "path": str(self.destination)}


def _export_query(
    connection: duckdb.DuckDBPyConnection,
    query: str,
    workspace: str,
    writer: ParquetBatchWriter,
) -> Dict[str, Any]:
    cursor = connection.cursor()
    try:
        cursor.execute(query, [workspace])
        columns = [desc[0] for desc in cursor.description]
        while True:
            batch = cursor.fetchmany(EXPORT_BATCH_ROWS)
            if not batch:
                break
            writer.write_rows([dict(zip(columns, row)) for row in batch])
    finally:
        cursor.close()
    return writer.finalize()


def export_workspace(
    connection: duckdb.DuckDBPyConnection,
    workspace: str,
    destination: Path,
    *,
    compression: Optional[str] = None,
) -> Dict[str, Any]:
    """Write ``threads.parquet`` and ``frames.parquet`` for *workspace*."""

    destination = Path(destination)
    codec = compression or settings.parquet_compression
    telemetry = {
        "threads": _export_query(
            connection,
            _THREAD_QUERY,
            workspace,
            ParquetBatchWriter(destination / "threads.parquet", THREAD_SCHEMA, compression=codec),
        ),
        "frames": _export_query(
            connection,
            _FRAME_QUERY,
            workspace,
            ParquetBatchWriter(destination / "frames.parquet", FRAME_SCHEMA, compression=codec),
        ),
    }
    LOGGER.info(
        "Exported workspace %s to %s (%d threads, %d frames)",
        workspace,
        destination,
        telemetry["threads"]["rows_written"],
        telemetry["frames"]["rows_written"],
    )
    return telemetry
