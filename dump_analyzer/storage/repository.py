"""Row models and queries over the analyzer tables."""

from __future__ import annotations

import uuid
from dataclasses import astuple, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import duckdb

from ..analysis.cache import call_trees
from ..analysis.call_tree import CallTreeNode, build_call_tree_parallel
from ..analysis.codec import Encoder, StackCompressor
from ..analysis.interner import StringInterner
from ..ingest.thread_dump import (
    CallFrame,
    Eliminated,
    Frame,
    Lock,
    MethodCall,
    Monitor,
    MonitorAction,
    NativeMethod,
    Parking,
    Thread,
    ThreadStatus,
    frame_address,
)
from ..utils.logging_utils import get_logger
from .batch_writer import batch_add

LOGGER = get_logger("storage.repository")


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Row models


class _Row:
    def as_tuple(self) -> Tuple[Any, ...]:
        return astuple(self)  # type: ignore[call-overload]

    @classmethod
    def columns(cls) -> List[str]:
        return [f.name for f in fields(cls)]  # type: ignore[arg-type]


@dataclass
class WorkspaceRow(_Row):
    id: str
    source_path: str
    created_at: datetime


@dataclass
class SourceFileRow(_Row):
    id: str
    workspace: str
    file_path: str
    file_type: str
    captured_at: Optional[datetime]


@dataclass
class ThreadRow(_Row):
    id: str
    workspace: str
    file_id: str
    thread_id: Optional[str]
    thread_name: str
    daemon: bool
    prio: Optional[int]
    os_prio: int
    tid: int
    nid: int
    address: Optional[str]
    thread_status: str
    start_line: Optional[int]
    end_line: Optional[int]
    top_method: Optional[str]


@dataclass
class StackRow(_Row):
    id: str
    workspace: str
    thread_id: str
    frame_index: int
    class_name: str
    method_name: Optional[str]
    method_line: Optional[int]
    file_name: Optional[str]
    method_code: Optional[int]
    frame_kind: str
    frame_address: Optional[int]
    monitor_action: Optional[str]


@dataclass
class DictionaryRow(_Row):
    workspace: str
    code: int
    value: str


TABLES = {
    "workspaces": WorkspaceRow,
    "source_files": SourceFileRow,
    "thread_info": ThreadRow,
    "thread_stack": StackRow,
    "stack_dictionary": DictionaryRow,
}


# ---------------------------------------------------------------------------
# Row derivation


def thread_rows(
    thread: Thread,
    *,
    workspace: str,
    file_id: str,
    compressor: Optional[StackCompressor] = None,
) -> Tuple[ThreadRow, List[StackRow]]:
    """Flatten a parsed thread into its ``thread_info`` and ``thread_stack`` rows."""

    row = ThreadRow(
        id=new_id(),
        workspace=workspace,
        file_id=file_id,
        thread_id=thread.id,
        thread_name=thread.name,
        daemon=thread.daemon,
        prio=thread.prio,
        os_prio=thread.os_prio,
        tid=thread.tid,
        nid=thread.nid,
        address=thread.address,
        thread_status=thread.status.value,
        start_line=thread.start_line,
        end_line=thread.end_line,
        top_method=thread.top_method,
    )

    signatures = [call.signature for call in thread.frames]
    codes: List[Optional[int]] = [None] * len(signatures)
    if compressor is not None:
        present = [(index, name) for index, name in enumerate(signatures) if name is not None]
        for (index, _), code in zip(
            present, compressor.compress_stack([name for _, name in present])
        ):
            codes[index] = code

    stacks = []
    for index, call in enumerate(thread.frames):
        stacks.append(
            StackRow(
                id=new_id(),
                workspace=workspace,
                thread_id=row.id,
                frame_index=index,
                class_name=call.class_name,
                method_name=call.method_name,
                method_line=call.line_number,
                file_name=call.file_name,
                method_code=codes[index],
                frame_kind=call.frame.kind,
                frame_address=frame_address(call.frame),
                monitor_action=call.frame.action.value if isinstance(call.frame, Monitor) else None,
            )
        )
    return row, stacks


def dictionary_rows(workspace: str, encoder: Encoder) -> List[DictionaryRow]:
    return [
        DictionaryRow(workspace=workspace, code=code, value=value)
        for code, value in encoder.entries()
    ]


def _frame_from_columns(kind: str, address: Optional[int], action: Optional[str]) -> Frame:
    if kind == MethodCall.kind:
        return MethodCall()
    if kind == NativeMethod.kind:
        return NativeMethod()
    if kind == Eliminated.kind:
        return Eliminated()
    if kind == Lock.kind:
        return Lock(lock_address=int(address or 0))
    if kind == Monitor.kind:
        return Monitor(
            monitor_address=int(address or 0),
            action=MonitorAction(action or MonitorAction.LOCKED.value),
        )
    if kind == Parking.kind:
        return Parking(parking_address=int(address or 0))
    raise ValueError(f"Unknown stored frame kind {kind!r}")


# ---------------------------------------------------------------------------
# Writes


def write_rows(
    connection: duckdb.DuckDBPyConnection,
    table: str,
    rows: Sequence[_Row],
    **options: Any,
) -> int:
    if not rows:
        return 0
    model = TABLES[table]
    return batch_add(
        connection,
        table,
        model.columns(),
        [row.as_tuple() for row in rows],
        **options,
    )


def create_workspace(
    connection: duckdb.DuckDBPyConnection, source_path: str
) -> WorkspaceRow:
    row = WorkspaceRow(
        id=new_id(),
        source_path=source_path,
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    connection.execute(
        "INSERT INTO workspaces (id, source_path, created_at) VALUES (?, ?, ?)",
        list(row.as_tuple()),
    )
    LOGGER.info("Created workspace %s for %s", row.id, source_path)
    return row


def delete_workspace(connection: duckdb.DuckDBPyConnection, workspace: str) -> bool:
    exists = workspace_exists(connection, workspace)
    cursor = connection.cursor()
    try:
        cursor.begin()
        for table in ("method_index", "stack_dictionary", "thread_stack", "thread_info", "source_files"):
            cursor.execute(f"DELETE FROM {table} WHERE workspace = ?", [workspace])
        cursor.execute("DELETE FROM workspaces WHERE id = ?", [workspace])
        cursor.commit()
    except duckdb.Error:
        cursor.rollback()
        raise
    finally:
        cursor.close()
    return exists


# ---------------------------------------------------------------------------
# Reads


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _fetch_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    columns = [desc[0] for desc in cursor.description]
    return [
        {column: _normalize(value) for column, value in zip(columns, row)}
        for row in cursor.fetchall()
    ]


def workspace_exists(connection: duckdb.DuckDBPyConnection, workspace: str) -> bool:
    row = connection.execute(
        "SELECT COUNT(*) FROM workspaces WHERE id = ?", [workspace]
    ).fetchone()
    return bool(row and row[0])


def list_workspaces(connection: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    cursor = connection.execute(
        """
        SELECT
            w.id,
            w.source_path,
            w.created_at,
            (SELECT COUNT(*) FROM source_files f WHERE f.workspace = w.id) AS files,
            (SELECT COUNT(*) FROM thread_info t WHERE t.workspace = w.id) AS threads
        FROM workspaces w
        ORDER BY w.created_at DESC
        """
    )
    return _fetch_dicts(cursor)


def list_threads(
    connection: duckdb.DuckDBPyConnection,
    workspace: str,
    *,
    status: Optional[ThreadStatus] = None,
    file_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    clauses = ["t.workspace = ?"]
    params: List[Any] = [workspace]
    if status is not None:
        clauses.append("t.thread_status = ?")
        params.append(ThreadStatus(status).value)
    if file_id is not None:
        clauses.append("t.file_id = ?")
        params.append(file_id)
    query = f"""
        SELECT t.*, f.file_path
        FROM thread_info t
        LEFT JOIN source_files f ON t.file_id = f.id
        WHERE {' AND '.join(clauses)}
        ORDER BY f.captured_at NULLS LAST, f.file_path, t.start_line
    """
    if limit is not None:
        query += " LIMIT ?"
        params.append(int(limit))
    return _fetch_dicts(connection.execute(query, params))


def count_thread_status(
    connection: duckdb.DuckDBPyConnection, workspace: str
) -> List[Dict[str, Any]]:
    """Thread counts per dump file and state, in capture order."""

    cursor = connection.execute(
        """
        SELECT
            f.id AS file_id,
            f.file_path,
            f.captured_at,
            t.thread_status,
            COUNT(*) AS threads
        FROM thread_info t
        JOIN source_files f ON t.file_id = f.id
        WHERE t.workspace = ?
        GROUP BY f.id, f.file_path, f.captured_at, t.thread_status
        ORDER BY f.captured_at NULLS LAST, f.file_path, t.thread_status
        """,
        [workspace],
    )
    return _fetch_dicts(cursor)


def load_threads(
    connection: duckdb.DuckDBPyConnection, workspace: str
) -> List[Thread]:
    """Rebuild parsed :class:`Thread` records from stored rows."""

    frames: Dict[str, List[CallFrame]] = {}
    stack_cursor = connection.execute(
        """
        SELECT thread_id, class_name, method_name, method_line, file_name,
               frame_kind, frame_address, monitor_action
        FROM thread_stack
        WHERE workspace = ?
        ORDER BY thread_id, frame_index
        """,
        [workspace],
    )
    for (
        thread_id,
        class_name,
        method_name,
        method_line,
        file_name,
        kind,
        address,
        action,
    ) in stack_cursor.fetchall():
        frames.setdefault(thread_id, []).append(
            CallFrame(
                class_name=class_name,
                method_name=method_name,
                line_number=method_line,
                frame=_frame_from_columns(kind, address, action),
                file_name=file_name,
            )
        )

    threads: List[Thread] = []
    thread_cursor = connection.execute(
        """
        SELECT id, thread_id, thread_name, daemon, prio, os_prio, tid, nid,
               address, thread_status, start_line, end_line
        FROM thread_info
        WHERE workspace = ?
        """,
        [workspace],
    )
    for (
        row_id,
        display_id,
        name,
        daemon,
        prio,
        os_prio,
        tid,
        nid,
        address,
        status,
        start_line,
        end_line,
    ) in thread_cursor.fetchall():
        threads.append(
            Thread(
                id=display_id,
                name=name,
                daemon=bool(daemon),
                prio=prio,
                os_prio=os_prio,
                tid=int(tid),
                nid=int(nid),
                status=ThreadStatus(status),
                address=address,
                frames=tuple(frames.get(row_id, ())),
                start_line=start_line,
                end_line=end_line,
            )
        )
    LOGGER.debug("Loaded %d threads for workspace %s", len(threads), workspace)
    return threads


def load_encoder(connection: duckdb.DuckDBPyConnection, workspace: str) -> Encoder:
    rows: Iterable[Tuple[int, str]] = connection.execute(
        "SELECT code, value FROM stack_dictionary WHERE workspace = ?", [workspace]
    ).fetchall()
    return Encoder.from_entries((int(code), value) for code, value in rows)


def load_call_tree(
    connection: duckdb.DuckDBPyConnection, workspace: str
) -> List[CallTreeNode]:
    """Cached call tree for *workspace*, rebuilt from stored rows on a miss."""

    forest = call_trees.get(workspace)
    if forest is not None:
        return forest
    threads = load_threads(connection, workspace)
    forest = build_call_tree_parallel(threads, interner=StringInterner())
    call_trees.put(workspace, forest)
    LOGGER.info(
        "Rebuilt call tree for workspace %s from %d stored threads", workspace, len(threads)
    )
    return forest
