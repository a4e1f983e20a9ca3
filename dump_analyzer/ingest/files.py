"""Discover, expand and classify the files of one diagnostics capture."""

from __future__ import annotations

import gzip
import re
import shutil
import tarfile
import tempfile
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
from zipfile import BadZipFile, ZipFile

from werkzeug.datastructures import FileStorage

from ..config import settings
from ..errors import UnsupportedSourceError
from ..utils.logging_utils import get_logger

LOGGER = get_logger("ingest.files")

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".zip", ".tar")
CAPTURE_TIME = re.compile(r"(\d{8}_\d{6})")
CAPTURE_TIME_FORMAT = "%Y%m%d_%H%M%S"


class FileType(str, Enum):
    CPU_THREAD = "CPU_THREAD"
    CPU_TOP = "CPU_TOP"
    THREAD_DUMP = "THREAD_DUMP"
    GC_UTIL = "GC_UTIL"
    GC = "GC"
    NONE = "NONE"


@dataclass(frozen=True)
class SourceFile:
    id: str
    path: Path
    file_type: FileType
    captured_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": str(self.path),
            "file_type": self.file_type.value,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
        }


def classify_file(name: str) -> FileType:
    """Classify by keyword; the first matching keyword wins."""

    ordered = (
        (settings.cpu_thread_keyword, FileType.CPU_THREAD),
        (settings.cpu_top_keyword, FileType.CPU_TOP),
        (settings.thread_dump_keyword, FileType.THREAD_DUMP),
        (settings.gc_util_keyword, FileType.GC_UTIL),
        (settings.gc_keyword, FileType.GC),
    )
    for keyword, file_type in ordered:
        if keyword and keyword in name:
            return file_type
    return FileType.NONE


def capture_time(name: str) -> Optional[datetime]:
    match = CAPTURE_TIME.search(name)
    if match is None:
        return None
    try:
        return datetime.strptime(match.group(1), CAPTURE_TIME_FORMAT)
    except ValueError:
        LOGGER.warning("Ignoring malformed capture time in %s", name)
        return None


def describe_file(path: Path, file_id: str) -> SourceFile:
    file_type = classify_file(path.name)
    captured_at = capture_time(path.name) if file_type is FileType.THREAD_DUMP else None
    return SourceFile(id=file_id, path=path, file_type=file_type, captured_at=captured_at)


def _is_archive(name: str) -> bool:
    return any(name.endswith(suffix) for suffix in ARCHIVE_SUFFIXES)


def expand_source(path: Path, work_dir: Path) -> List[Path]:
    """Return the plain files *path* stands for, extracting into *work_dir*."""

    path = Path(path)
    work_dir = Path(work_dir)
    if path.is_dir():
        return sorted(candidate for candidate in path.rglob("*") if candidate.is_file())
    if not path.is_file():
        raise UnsupportedSourceError(f"Source {path} does not exist")

    name = path.name.lower()
    if _is_archive(name):
        work_dir.mkdir(parents=True, exist_ok=True)
        extract_dir = Path(tempfile.mkdtemp(dir=work_dir, prefix="extract_"))
        LOGGER.debug("Extracting archive %s into %s", path, extract_dir)
        try:
            if name.endswith(".zip"):
                with ZipFile(path) as zipf:
                    _safe_extract_zip(zipf, extract_dir)
            else:
                with tarfile.open(path) as tar:
                    _safe_extract_tar(tar, extract_dir)
        except (OSError, BadZipFile, tarfile.TarError) as exc:
            raise UnsupportedSourceError(f"Cannot extract {path}: {exc}") from exc
        return sorted(candidate for candidate in extract_dir.rglob("*") if candidate.is_file())

    if name.endswith(".gz"):
        work_dir.mkdir(parents=True, exist_ok=True)
        dest = work_dir / path.stem
        LOGGER.debug("Decompressing gzip %s into %s", path, dest)
        try:
            with gzip.open(path, "rb") as src, open(dest, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as exc:
            raise UnsupportedSourceError(f"Cannot decompress {path}: {exc}") from exc
        return [dest]

    return [path]


def collect_source_files(
    source: Path,
    work_dir: Path,
    *,
    id_factory: Optional[Callable[[], str]] = None,
) -> List[SourceFile]:
    """Expand *source* and classify every file found in it."""

    make_id = id_factory or (lambda: uuid.uuid4().hex)
    start = time.perf_counter()
    paths = expand_source(Path(source), Path(work_dir))
    files = [describe_file(path, make_id()) for path in paths]
    LOGGER.info(
        "Collected %d file(s) from %s in %.2fs (%d thread dump(s))",
        len(files),
        source,
        time.perf_counter() - start,
        sum(1 for item in files if item.file_type is FileType.THREAD_DUMP),
    )
    return files


def save_uploads(files: Iterable[FileStorage], *, upload_dir: Path) -> List[Path]:
    """Persist uploaded files into *upload_dir* and return their paths."""

    upload_dir = Path(upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    saved: List[Path] = []
    for storage in files:
        if not storage or not storage.filename:
            continue

        filename = Path(storage.filename).name
        target = upload_dir / filename

        save_start = time.perf_counter()
        storage.save(target)
        size_bytes = target.stat().st_size if target.exists() else 0
        LOGGER.info(
            "Stored upload %s at %s (%.2f MiB) in %.2fs",
            filename,
            target,
            size_bytes / (1024 * 1024) if size_bytes else 0.0,
            time.perf_counter() - save_start,
        )
        saved.append(target)
    return saved


def remove_work_dir(path: Path) -> None:
    if settings.keep_extracted:
        return
    shutil.rmtree(path, ignore_errors=True)


def _safe_extract_zip(zipf: ZipFile, destination: Path) -> None:
    dest_root = destination.resolve()
    for member in zipf.infolist():
        member_path = (destination / member.filename).resolve()
        if not member_path.is_relative_to(dest_root):
            raise UnsupportedSourceError(f"Unsafe path in zip archive: {member.filename}")
        if member.is_dir() or member.filename.endswith("/"):
            member_path.mkdir(parents=True, exist_ok=True)
            continue
        member_path.parent.mkdir(parents=True, exist_ok=True)
        with zipf.open(member) as src, open(member_path, "wb") as dst:
            shutil.copyfileobj(src, dst)


def _safe_extract_tar(tar: tarfile.TarFile, destination: Path) -> None:
    dest_root = destination.resolve()
    safe_members = []
    for member in tar.getmembers():
        member_path = (destination / member.name).resolve()
        if not member_path.is_relative_to(dest_root):
            raise UnsupportedSourceError(f"Unsafe path in tar archive: {member.name}")
        if member.issym() or member.islnk():
            LOGGER.warning("Skipping link %s in tar archive", member.name)
            continue
        safe_members.append(member)
    tar.extractall(destination, members=safe_members)
