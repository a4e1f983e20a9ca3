"""Concurrent, transactional bulk inserts.

``batch_add`` splits the rows into one contiguous slice per CPU. Producer
threads hand their slice to a single queue; one consumer drains the queue and
starts a worker per slice, and each worker inserts its rows in transactions of
at most ``chunk_rows`` rows on its own cursor. Completion is signalled by
closing the queue once every producer is joined; the call returns after every
worker is joined. No ordering is guaranteed across slices and atomicity is per
transaction.
"""

from __future__ import annotations

import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import duckdb

from ..config import settings
from ..errors import BatchInsertError, StorageError
from ..utils.concurrency import cpu_count, create_thread_pool
from ..utils.logging_utils import get_logger
from .database import tune_for_bulk_load

LOGGER = get_logger("storage.batch_writer")

Row = Tuple[Any, ...]

_CLOSED = object()


@dataclass
class WorkItem:
    """One slice of homogeneous rows plus the storage handle to write it with."""

    connection: duckdb.DuckDBPyConnection
    rows: Sequence[Row]
    index: int


def partition(total: int, parts: int) -> List[Tuple[int, int]]:
    """Split ``range(total)`` into *parts* contiguous ``(start, end)`` bounds.

    Every slice gets ``total // parts`` rows and the last one also absorbs the
    ``total % parts`` remainder.
    """

    parts = max(1, parts)
    each = total // parts
    remainder = total % parts
    bounds: List[Tuple[int, int]] = []
    for index in range(parts):
        start = index * each
        end = start + each
        if index == parts - 1:
            end += remainder
        bounds.append((start, end))
    return bounds


def insert_statement(table: str, columns: Sequence[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _rollback(cursor: duckdb.DuckDBPyConnection) -> None:
    try:
        cursor.rollback()
    except duckdb.Error:
        LOGGER.debug("Rollback after failed insert also failed", exc_info=True)


def execute_batch_add(item: WorkItem, *, statement: str, chunk_rows: int) -> int:
    """Insert one slice on a dedicated cursor; returns the number of rows written."""

    start = time.perf_counter()
    cursor = item.connection.cursor()
    written = 0
    try:
        for offset in range(0, len(item.rows), chunk_rows):
            chunk = list(item.rows[offset : offset + chunk_rows])
            cursor.begin()
            try:
                cursor.executemany(statement, chunk)
                cursor.commit()
            except duckdb.Error as exc:
                _rollback(cursor)
                raise StorageError(
                    f"Slice {item.index} failed after {written} rows: {exc}"
                ) from exc
            written += len(chunk)
    finally:
        cursor.close()
    LOGGER.debug(
        "Slice %d wrote %d rows in %.3fs", item.index, written, time.perf_counter() - start
    )
    return written


def _produce(inbox: "queue.Queue[object]", item: WorkItem) -> None:
    inbox.put(item)


def _consume(
    inbox: "queue.Queue[object]",
    pool: ThreadPoolExecutor,
    execute: Callable[[WorkItem], int],
) -> List[Future]:
    tasks: List[Future] = []
    while True:
        item = inbox.get()
        if item is _CLOSED:
            break
        if not isinstance(item, WorkItem):
            raise TypeError(f"Unexpected queue item {item!r}")
        if not item.rows:
            continue
        tasks.append(pool.submit(execute, item))
    return tasks


def batch_add(
    connection: duckdb.DuckDBPyConnection,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Row],
    *,
    workers: Optional[int] = None,
    chunk_rows: Optional[int] = None,
    tune: Optional[bool] = None,
) -> int:
    """Insert *rows* into *table* using the fan-out/fan-in writer.

    Raises :class:`BatchInsertError` listing every failed worker once all
    workers have finished; slices written by other workers stay committed.
    """

    if not rows:
        return 0
    should_tune = settings.tune_bulk_load if tune is None else tune
    if should_tune:
        tune_for_bulk_load(connection)

    producers = workers or cpu_count()
    size = chunk_rows or settings.chunk_rows
    statement = insert_statement(table, columns)
    inbox: "queue.Queue[object]" = queue.Queue()

    def execute(item: WorkItem) -> int:
        return execute_batch_add(item, statement=statement, chunk_rows=size)

    start = time.perf_counter()
    errors: List[BaseException] = []
    written = 0
    worker_pool = create_thread_pool(producers, prefix=f"{table}-writer")
    consumer_pool = create_thread_pool(1, prefix=f"{table}-consumer")
    producer_pool = create_thread_pool(producers, prefix=f"{table}-producer")
    with worker_pool, consumer_pool, producer_pool:
        consumer = consumer_pool.submit(_consume, inbox, worker_pool, execute)

        handles = [
            producer_pool.submit(
                _produce, inbox, WorkItem(connection=connection, rows=rows[lo:hi], index=index)
            )
            for index, (lo, hi) in enumerate(partition(len(rows), producers))
        ]
        for handle in handles:
            handle.result()
        inbox.put(_CLOSED)

        for task in consumer.result():
            try:
                written += task.result()
            except Exception as exc:  # collected and re-raised below
                LOGGER.error("Insert worker for %s failed: %s", table, exc)
                errors.append(exc)

    if errors:
        raise BatchInsertError(table, errors)

    LOGGER.info(
        "Inserted %d rows into %s with %d producers in %.2fs",
        written,
        table,
        producers,
        time.perf_counter() - start,
    )
    return written
