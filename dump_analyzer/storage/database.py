"""DuckDB connection and schema management."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import duckdb

from ..config import settings
from ..utils.logging_utils import get_logger

LOGGER = get_logger("storage.database")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id VARCHAR NOT NULL,
        source_path VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_files (
        id VARCHAR NOT NULL,
        workspace VARCHAR NOT NULL,
        file_path VARCHAR NOT NULL,
        file_type VARCHAR NOT NULL,
        captured_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS thread_info (
        id VARCHAR NOT NULL,
        workspace VARCHAR NOT NULL,
        file_id VARCHAR NOT NULL,
        thread_id VARCHAR,
        thread_name VARCHAR NOT NULL,
        daemon BOOLEAN NOT NULL,
        prio INTEGER,
        os_prio INTEGER NOT NULL,
        tid UBIGINT NOT NULL,
        nid UBIGINT NOT NULL,
        address VARCHAR,
        thread_status VARCHAR NOT NULL,
        start_line BIGINT,
        end_line BIGINT,
        top_method VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS thread_stack (
        id VARCHAR NOT NULL,
        workspace VARCHAR NOT NULL,
        thread_id VARCHAR NOT NULL,
        frame_index INTEGER NOT NULL,
        class_name VARCHAR NOT NULL,
        method_name VARCHAR,
        method_line INTEGER,
        file_name VARCHAR,
        method_code UINTEGER,
        frame_kind VARCHAR NOT NULL,
        frame_address UBIGINT,
        monitor_action VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stack_dictionary (
        workspace VARCHAR NOT NULL,
        code UINTEGER NOT NULL,
        value VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS method_index (
        workspace VARCHAR NOT NULL,
        method_raw VARCHAR NOT NULL
    )
    """,
)

# Settings that trade durability for insert throughput during a bulk load.
BULK_LOAD_SETTINGS = (
    "SET preserve_insertion_order = false",
    "SET wal_autocheckpoint = '1GB'",
)


def connect(database: Optional[str] = None) -> duckdb.DuckDBPyConnection:
    """Open the analyzer database and make sure the schema exists."""

    target = database if database is not None else settings.database_path
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(database=target)
    ensure_schema(conn)
    LOGGER.info("Opened DuckDB database %s", target)
    return conn


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)


def tune_for_bulk_load(conn: duckdb.DuckDBPyConnection) -> bool:
    """Best-effort bulk-load tuning; returns ``False`` if any setting failed."""

    ok = True
    for statement in BULK_LOAD_SETTINGS:
        try:
            conn.execute(statement)
        except duckdb.Error:
            ok = False
            LOGGER.warning("Bulk-load tuning statement failed: %s", statement, exc_info=True)
    return ok
