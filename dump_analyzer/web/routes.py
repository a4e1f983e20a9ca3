"""Flask blueprint exposing the analyzer over HTTP."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Optional

import duckdb
from flask import Blueprint, current_app, g, jsonify, request

from ..analysis.cache import call_trees
from ..analysis.call_tree import forest_to_dict, hottest_path
from ..config import settings
from ..ingest.files import remove_work_dir, save_uploads
from ..ingest.pipeline import ingest_dump
from ..ingest.thread_dump import ThreadStatus
from ..runtime.tasks import ExecuteContext, TaskExecutor
from ..search.method_index import MethodSearchIndex
from ..storage import repository
from ..utils.logging_utils import get_logger

LOGGER = get_logger("web.routes")

bp = Blueprint("dump_analyzer_v1", __name__, url_prefix="/v1")


def _get_connection() -> duckdb.DuckDBPyConnection:
    cursor: Optional[duckdb.DuckDBPyConnection] = g.get("dump_analyzer_cursor")
    if cursor is None:
        cursor = current_app.dump_analyzer_connection.cursor()
        g.dump_analyzer_cursor = cursor
    return cursor


def _get_executor() -> TaskExecutor:
    return current_app.dump_analyzer_tasks


@bp.teardown_app_request
def _close_cursor(exception: Optional[BaseException]) -> None:
    cursor = g.pop("dump_analyzer_cursor", None)
    if cursor is not None:
        cursor.close()


def _ingest_task(source: Path, work_root: Path, *, cleanup: Optional[Path] = None):
    def run(context: ExecuteContext) -> Any:
        cursor = context.connection.cursor()
        try:
            return ingest_dump(source, connection=cursor, context=context, work_root=work_root)
        finally:
            cursor.close()
            if cleanup is not None:
                remove_work_dir(cleanup)

    return run


def _work_root() -> Path:
    return Path(current_app.config.get("DUMP_ANALYZER_WORK_ROOT", settings.work_root))


def _missing_workspace(workspace: str):
    if repository.workspace_exists(_get_connection(), workspace):
        return None
    return jsonify({"error": f"Unknown workspace {workspace}"}), 404


def _safe_int(raw: Any) -> Optional[int]:
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


@bp.route("/workspaces", methods=["POST"])
def create_workspace() -> Any:
    payload = request.get_json(silent=True) or {}
    raw_path = payload.get("path")
    if not raw_path:
        return jsonify({"error": "Field 'path' is required"}), 400
    source = Path(raw_path)
    if not source.exists():
        return jsonify({"error": f"Path {source} does not exist"}), 404
    task_id = _get_executor().submit_task(
        _ingest_task(source, _work_root()), param=str(source)
    )
    LOGGER.info("Queued ingest task %s for %s", task_id, source)
    return jsonify({"task_id": task_id}), 202


@bp.route("/uploads", methods=["POST"])
def upload_dumps() -> Any:
    files = request.files.getlist("files")
    if not files or not any(item.filename for item in files):
        return jsonify({"error": "No files uploaded"}), 400
    upload_dir = _work_root() / "uploads" / uuid.uuid4().hex
    saved = save_uploads(files, upload_dir=upload_dir)
    task_id = _get_executor().submit_task(
        _ingest_task(upload_dir, _work_root(), cleanup=upload_dir),
        param=[str(path) for path in saved],
    )
    LOGGER.info("Queued ingest task %s for %d uploaded file(s)", task_id, len(saved))
    return jsonify({"task_id": task_id, "files": [path.name for path in saved]}), 202


@bp.route("/tasks/<task_id>")
def task_status(task_id: str) -> Any:
    status = _get_executor().get_task_status(task_id)
    if status is None:
        return jsonify({"error": f"Unknown task {task_id}"}), 404
    return jsonify(status.as_dict())


@bp.route("/tasks/<task_id>", methods=["DELETE"])
def remove_task(task_id: str) -> Any:
    status = _get_executor().remove_task(task_id)
    if status is None:
        return jsonify({"error": f"Unknown task {task_id}"}), 404
    return jsonify(status.as_dict())


@bp.route("/workspaces")
def list_workspaces() -> Any:
    return jsonify({"workspaces": repository.list_workspaces(_get_connection())})


@bp.route("/workspaces/<workspace>", methods=["DELETE"])
def delete_workspace(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    repository.delete_workspace(_get_connection(), workspace)
    call_trees.discard(workspace)
    return jsonify({"deleted": workspace})


@bp.route("/workspaces/<workspace>/threads")
def workspace_threads(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    raw_status = request.args.get("status")
    status = None
    if raw_status:
        try:
            status = ThreadStatus(raw_status.upper())
        except ValueError:
            return jsonify({"error": f"Unknown thread status {raw_status}"}), 400
    rows = repository.list_threads(
        _get_connection(),
        workspace,
        status=status,
        file_id=request.args.get("file_id") or None,
        limit=_safe_int(request.args.get("limit")),
    )
    return jsonify({"threads": rows})


@bp.route("/workspaces/<workspace>/status-summary")
def status_summary(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    return jsonify({"summary": repository.count_thread_status(_get_connection(), workspace)})


@bp.route("/workspaces/<workspace>/call-tree")
def call_tree(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    forest = repository.load_call_tree(_get_connection(), workspace)
    depth = _safe_int(request.args.get("depth"))
    return jsonify({"roots": forest_to_dict(forest, max_depth=depth)})


@bp.route("/workspaces/<workspace>/hottest-path")
def workspace_hottest_path(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    path = hottest_path(repository.load_call_tree(_get_connection(), workspace))
    return jsonify(
        {"path": [{"method_name": method, "samples": samples} for method, samples in path]}
    )


@bp.route("/workspaces/<workspace>/search")
def search_methods(workspace: str) -> Any:
    missing = _missing_workspace(workspace)
    if missing is not None:
        return missing
    query = request.args.get("q") or ""
    results = MethodSearchIndex(_get_connection(), workspace).search(
        query,
        fuzziness=_safe_int(request.args.get("fuzziness")),
        limit=_safe_int(request.args.get("limit")),
    )
    return jsonify({"query": query, "results": results})
