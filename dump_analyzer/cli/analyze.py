"""Command-line interface for the dump analyzer."""

from __future__ import annotations

import argparse
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..analysis.call_tree import forest_to_dict, hottest_path
from ..config import settings
from ..ingest.pipeline import ingest_dump
from ..ingest.thread_dump import ThreadStatus
from ..search.method_index import MethodSearchIndex
from ..storage import repository
from ..storage.database import connect
from ..storage.export import export_workspace


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Java thread-dump analyzer CLI")
    parser.add_argument(
        "--db", type=str, default=None, help="DuckDB database path (defaults to config)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ingest_parser = sub.add_parser("ingest", help="Ingest a dump file, directory or archive")
    ingest_parser.add_argument("path", type=Path, help="Dump file, directory or archive")
    ingest_parser.add_argument(
        "--workers", type=int, default=None, help="Worker threads (default: CPU count)"
    )
    ingest_parser.add_argument(
        "--work-root", type=Path, default=None, help="Extraction directory (defaults to config)"
    )

    sub.add_parser("workspaces", help="List ingested workspaces")

    threads_parser = sub.add_parser("threads", help="List threads of a workspace")
    threads_parser.add_argument("workspace")
    threads_parser.add_argument(
        "--status",
        choices=[status.value for status in ThreadStatus],
        default=None,
        help="Only show threads in this state",
    )
    threads_parser.add_argument("--limit", type=int, default=50, help="Rows to print")

    status_parser = sub.add_parser("status", help="Thread states per dump file")
    status_parser.add_argument("workspace")

    tree_parser = sub.add_parser("call-tree", help="Print the aggregated call tree")
    tree_parser.add_argument("workspace")
    tree_parser.add_argument("--depth", type=int, default=None, help="Maximum depth")

    hottest_parser = sub.add_parser("hottest", help="Print the most sampled call path")
    hottest_parser.add_argument("workspace")

    search_parser = sub.add_parser("search", help="Search method names")
    search_parser.add_argument("workspace")
    search_parser.add_argument("query", help="Text or wildcard pattern (* and ?)")
    search_parser.add_argument(
        "--fuzziness", type=int, default=None, help="Maximum edit distance"
    )
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum results")

    export_parser = sub.add_parser("export", help="Export a workspace to Parquet")
    export_parser.add_argument("workspace")
    export_parser.add_argument("--out", type=Path, required=True, help="Output directory")
    export_parser.add_argument(
        "--compression",
        type=str,
        default=None,
        help="Parquet compression codec (default: config value)",
    )

    clean_parser = sub.add_parser("clean", help="Remove a workspace or all analyzer data")
    clean_parser.add_argument(
        "--workspace", default=None, help="Only delete this workspace"
    )
    clean_parser.add_argument(
        "--force", action="store_true", help="Skip confirmation prompt and delete immediately"
    )

    return parser


def _print_summary(telemetry: Dict[str, Any]) -> None:
    print(f"Source: {telemetry['source']}")
    print(f"  workspace: {telemetry['workspace']}")
    print(f"  files: {telemetry['files']} ({telemetry['thread_dumps']} thread dumps)")
    print(f"  threads: {telemetry['threads']} (system skipped: {telemetry['system_threads']})")
    print(f"  frames: {telemetry['frames']}")
    print(f"  dictionary entries: {telemetry['dictionary_entries']}")
    failures = telemetry.get("failures", [])
    print(f"  dropped stanzas: {len(failures)}")
    for failure in failures[:10]:
        print(
            f"    {failure['path']}:{failure['start_line']} "
            f"{failure['error_type']}: {failure['error']}"
        )
    print(f"  duration: {telemetry['duration_seconds']:.2f}s")


def _print_tree(node: Dict[str, Any], indent: int = 0) -> None:
    print(f"{'  ' * indent}{node['samples']:>6}  {node['method_name']}")
    for child in node.get("next", []):
        _print_tree(child, indent + 1)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "clean":
        return _clean(args)

    connection = connect(args.db)
    try:
        return _dispatch(parser, args, connection)
    finally:
        connection.close()


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace, connection) -> int:
    if args.command == "ingest":
        telemetry = ingest_dump(
            args.path,
            connection=connection,
            work_root=args.work_root,
            workers=args.workers,
        )
        _print_summary(telemetry)
        return 0

    if args.command == "workspaces":
        workspaces = repository.list_workspaces(connection)
        if not workspaces:
            print("No workspaces ingested yet")
            return 0
        for item in workspaces:
            print(
                f"{item['id']}  {item['created_at']}  files={item['files']} "
                f"threads={item['threads']}  {item['source_path']}"
            )
        return 0

    if not repository.workspace_exists(connection, args.workspace):
        print(f"Unknown workspace {args.workspace}")
        return 1

    if args.command == "threads":
        status = ThreadStatus(args.status) if args.status else None
        rows = repository.list_threads(
            connection, args.workspace, status=status, limit=max(1, args.limit)
        )
        for row in rows:
            print(
                f"{row['thread_status']:<14} {row['thread_name']}  "
                f"nid=0x{row['nid']:x}  {row['top_method'] or '-'}"
            )
        return 0

    if args.command == "status":
        current = None
        for row in repository.count_thread_status(connection, args.workspace):
            if row["file_path"] != current:
                current = row["file_path"]
                print(f"{current} ({row['captured_at'] or 'unknown time'})")
            print(f"  {row['thread_status']:<14} {row['threads']}")
        return 0

    if args.command == "call-tree":
        forest = repository.load_call_tree(connection, args.workspace)
        for root in forest_to_dict(forest, max_depth=args.depth):
            _print_tree(root)
        return 0

    if args.command == "hottest":
        path = hottest_path(repository.load_call_tree(connection, args.workspace))
        if not path:
            print("No call paths recorded")
            return 0
        for depth, (method, samples) in enumerate(path):
            print(f"{'  ' * depth}{samples:>6}  {method}")
        return 0

    if args.command == "search":
        index = MethodSearchIndex(connection, args.workspace)
        for name in index.search(args.query, fuzziness=args.fuzziness, limit=args.limit):
            print(name)
        return 0

    if args.command == "export":
        telemetry = export_workspace(
            connection, args.workspace, args.out, compression=args.compression
        )
        for key in ("threads", "frames"):
            info = telemetry[key]
            print(f"  {key}: {info['rows_written']} rows -> {info['path']}")
        return 0

    parser.error("Unknown command")
    return 1


def _clean(args: argparse.Namespace) -> int:
    database = Path(args.db or settings.database_path)

    if args.workspace:
        if not args.force:
            response = input(f"Delete workspace {args.workspace}? [y/N] ").strip().lower()
            if response not in {"y", "yes"}:
                print("Aborted")
                return 1
        connection = connect(str(database))
        try:
            removed = repository.delete_workspace(connection, args.workspace)
        finally:
            connection.close()
        print(f"Removed workspace {args.workspace}" if removed else "Nothing to clean")
        return 0

    targets = [path for path in (database, settings.work_root) if path.exists()]
    if not targets:
        print("Nothing to clean")
        return 0
    if not args.force:
        names = ", ".join(str(path) for path in targets)
        response = input(f"Delete {names}? [y/N] ").strip().lower()
        if response not in {"y", "yes"}:
            print("Aborted")
            return 1
    for target in targets:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
        print(f"Removed {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
