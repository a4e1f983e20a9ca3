from __future__ import annotations

import io
import queue
import tarfile
import zipfile
from datetime import datetime

import pyarrow.parquet as pq
import pytest

from conftest import DUMP_NAME, SAMPLE_DUMP
from dump_analyzer.analysis.cache import call_trees
from dump_analyzer.analysis.call_tree import hottest_path
from dump_analyzer.errors import UnsupportedSourceError
from dump_analyzer.ingest.files import FileType, classify_file, collect_source_files
from dump_analyzer.ingest.pipeline import ingest_dump
from dump_analyzer.ingest.thread_dump import ThreadStatus, parse_thread_dump
from dump_analyzer.runtime.tasks import ExecuteContext, TaskPhase
from dump_analyzer.storage import repository
from dump_analyzer.storage.export import export_workspace

HOTTEST = [
    ("java.lang.Thread.run", 2),
    ("com.example.MyClass.run", 2),
    ("com.example.MyClass.myMethod", 1),
]


@pytest.fixture
def ingested(connection, dump_dir, tmp_path):
    telemetry = ingest_dump(dump_dir, connection=connection, work_root=tmp_path / "work", workers=2)
    return telemetry


@pytest.mark.parametrize(
    "name, expected",
    [
        ("app_thread_cpu_20240101.txt", FileType.CPU_THREAD),
        ("top_20240101_120000.txt", FileType.CPU_TOP),
        (DUMP_NAME, FileType.THREAD_DUMP),
        ("gcutil.log", FileType.GC_UTIL),
        ("gc.log", FileType.GC),
        ("readme.md", FileType.NONE),
    ],
)
def test_classify_file(name, expected):
    assert classify_file(name) is expected


def test_collect_directory(dump_dir, tmp_path):
    files = collect_source_files(dump_dir, tmp_path / "work")
    by_type = {item.file_type: item for item in files}

    assert set(by_type) == {FileType.THREAD_DUMP, FileType.GC}
    assert by_type[FileType.THREAD_DUMP].captured_at == datetime(2024, 1, 1, 12, 0, 0)
    assert by_type[FileType.GC].captured_at is None
    assert len({item.id for item in files}) == 2


def test_collect_zip_archive(tmp_path):
    archive = tmp_path / "capture.zip"
    with zipfile.ZipFile(archive, "w") as zipf:
        zipf.writestr(f"node1/{DUMP_NAME}", SAMPLE_DUMP)
    files = collect_source_files(archive, tmp_path / "work")

    assert [item.file_type for item in files] == [FileType.THREAD_DUMP]
    assert files[0].path.read_text(encoding="utf-8") == SAMPLE_DUMP


def test_collect_tar_archive(tmp_path):
    archive = tmp_path / "capture.tar.gz"
    payload = SAMPLE_DUMP.encode("utf-8")
    with tarfile.open(archive, "w:gz") as tar:
        info = tarfile.TarInfo(DUMP_NAME)
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    files = collect_source_files(archive, tmp_path / "work")
    assert [item.path.name for item in files] == [DUMP_NAME]


def test_zip_path_traversal_is_rejected(tmp_path):
    archive = tmp_path / "evil.zip"
    with zipfile.ZipFile(archive, "w") as zipf:
        zipf.writestr("../escape_jstack.txt", SAMPLE_DUMP)
    with pytest.raises(UnsupportedSourceError):
        collect_source_files(archive, tmp_path / "work")


def test_corrupt_zip_is_unsupported(tmp_path):
    archive = tmp_path / "broken_jstack.zip"
    archive.write_bytes(b"this is not a zip archive")
    with pytest.raises(UnsupportedSourceError):
        collect_source_files(archive, tmp_path / "work")


def test_failed_ingest_leaves_no_workspace(connection, tmp_path):
    archive = tmp_path / "broken_jstack.zip"
    archive.write_bytes(b"this is not a zip archive")
    with pytest.raises(UnsupportedSourceError):
        ingest_dump(archive, connection=connection, work_root=tmp_path / "work")

    assert repository.list_workspaces(connection) == []
    assert list((tmp_path / "work").iterdir()) == []


def test_missing_source_is_unsupported(tmp_path):
    with pytest.raises(UnsupportedSourceError):
        collect_source_files(tmp_path / "nowhere", tmp_path / "work")


def test_ingest_telemetry(ingested):
    assert ingested["files"] == 2
    assert ingested["thread_dumps"] == 1
    assert ingested["threads"] == 4
    assert ingested["frames"] == 10
    assert ingested["dictionary_entries"] == 5
    assert ingested["indexed_methods"] == 5
    assert ingested["system_threads"] == 1
    assert ingested["failure_counts"] == {"MissingFieldError": 1}
    assert ingested["failures"][0]["start_line"] == 19
    assert "parse_seconds" in ingested["timings"]


def test_ingest_reports_progress_in_order(connection, dump_dir, tmp_path):
    channel: "queue.Queue[object]" = queue.Queue()
    context = ExecuteContext(task_id="t1", channel=channel, connection=connection)
    ingest_dump(dump_dir, connection=connection, context=context, work_root=tmp_path / "work")

    progress = []
    while not channel.empty():
        value, _, _, _ = channel.get()
        progress.append(value)
    assert progress == [1, 5, 15, 30, 50, 65, 80, 90, 100]


def test_ingest_failure_marks_context_failed(connection, tmp_path):
    channel: "queue.Queue[object]" = queue.Queue()
    context = ExecuteContext(task_id="t2", channel=channel, connection=connection)
    with pytest.raises(UnsupportedSourceError):
        ingest_dump(tmp_path / "nowhere", connection=connection, context=context)

    updates = []
    while not channel.empty():
        updates.append(channel.get())
    assert updates[-1][2] is TaskPhase.FAILED


def test_workspace_queries(connection, ingested):
    workspace = ingested["workspace"]

    listed = repository.list_workspaces(connection)
    assert [(item["id"], item["files"], item["threads"]) for item in listed] == [(workspace, 2, 4)]

    blocked = repository.list_threads(connection, workspace, status=ThreadStatus.BLOCKED)
    assert [row["thread_name"] for row in blocked] == ["Thread-2"]
    assert blocked[0]["file_path"].endswith(DUMP_NAME)
    assert len(repository.list_threads(connection, workspace, limit=2)) == 2

    summary = {row["thread_status"]: row["threads"] for row in repository.count_thread_status(connection, workspace)}
    assert summary == {"BLOCKED": 1, "RUNNABLE": 1, "WAITING": 2}
    assert repository.count_thread_status(connection, workspace)[0]["captured_at"] == "2024-01-01T12:00:00"


def test_load_threads_rebuilds_parsed_records(connection, ingested, dump_dir):
    loaded = repository.load_threads(connection, ingested["workspace"])
    parsed = parse_thread_dump(dump_dir / DUMP_NAME).threads

    def key(thread):
        return thread.start_line

    assert sorted(loaded, key=key) == sorted(parsed, key=key)


def test_stored_codes_decode_through_dictionary(connection, ingested):
    workspace = ingested["workspace"]
    encoder = repository.load_encoder(connection, workspace)
    rows = connection.execute(
        """
        SELECT DISTINCT class_name || '.' || method_name, method_code
        FROM thread_stack
        WHERE workspace = ? AND method_code IS NOT NULL
        """,
        [workspace],
    ).fetchall()

    assert len(rows) == 5
    for signature, code in rows:
        assert encoder.decode(code) == signature


def test_call_tree_cached_and_rebuilt(connection, ingested):
    workspace = ingested["workspace"]
    assert call_trees.exists(workspace)
    assert hottest_path(repository.load_call_tree(connection, workspace)) == HOTTEST

    call_trees.discard(workspace)
    assert not call_trees.exists(workspace)
    assert hottest_path(repository.load_call_tree(connection, workspace)) == HOTTEST
    assert call_trees.exists(workspace)


def test_export_workspace(connection, ingested, tmp_path):
    telemetry = export_workspace(connection, ingested["workspace"], tmp_path / "export")

    threads = pq.read_table(telemetry["threads"]["path"])
    frames = pq.read_table(telemetry["frames"]["path"])
    assert threads.num_rows == 4
    assert frames.num_rows == 10
    assert "thread_status" in threads.column_names


def test_delete_workspace(connection, ingested):
    workspace = ingested["workspace"]
    assert repository.delete_workspace(connection, workspace) is True
    assert repository.list_workspaces(connection) == []
    assert connection.execute("SELECT COUNT(*) FROM thread_stack").fetchone()[0] == 0
    assert repository.delete_workspace(connection, workspace) is False
