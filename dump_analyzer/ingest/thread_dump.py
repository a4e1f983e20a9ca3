"""Thread-dump parsing for jstack-style text dumps."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import (
    IllegalStatusError,
    InvalidStatusError,
    MissingFieldError,
    ParseError,
    UnknownFrameError,
)
from ..utils.concurrency import create_thread_pool
from ..utils.logging_utils import get_logger

LOGGER = get_logger("ingest.thread_dump")


# ---------------------------------------------------------------------------
# Thread states


class ThreadStatus(str, Enum):
    NEW = "NEW"
    RUNNABLE = "RUNNABLE"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    BLOCKED = "BLOCKED"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN"


_STATE_WORDS = {
    "NEW": ThreadStatus.NEW,
    "RUNNABLE": ThreadStatus.RUNNABLE,
    "WAITING": ThreadStatus.WAITING,
    "TIMED_WAITING": ThreadStatus.TIMED_WAITING,
    "BLOCKED": ThreadStatus.BLOCKED,
    "TERMINATED": ThreadStatus.TERMINATED,
}

# Checked in order against the free text of header-only stanzas.
_HEADER_STATUS_KEYWORDS = (
    ("sleeping", ThreadStatus.TIMED_WAITING),
    ("waiting for monitor entry", ThreadStatus.BLOCKED),
    ("waiting on condition", ThreadStatus.WAITING),
    ("in Object.wait()", ThreadStatus.WAITING),
    ("runnable", ThreadStatus.RUNNABLE),
)

SYSTEM_THREAD_MARKERS = ("VM Thread", "VM Periodic Task Thread", "GC task thread")


# ---------------------------------------------------------------------------
# Frame variants


class MonitorAction(str, Enum):
    WAITING_TO_LOCK = "WAITING_TO_LOCK"
    WAITING_ON = "WAITING_ON"
    LOCKED = "LOCKED"


@dataclass(frozen=True)
class MethodCall:
    kind = "METHOD_CALL"


@dataclass(frozen=True)
class NativeMethod:
    kind = "NATIVE_METHOD"


@dataclass(frozen=True)
class Eliminated:
    """JIT lock elimination marker (``- eliminated <...>``)."""

    kind = "ELIMINATED"


@dataclass(frozen=True)
class Lock:
    lock_address: int
    kind = "LOCK"


@dataclass(frozen=True)
class Monitor:
    monitor_address: int
    action: MonitorAction
    kind = "MONITOR"


@dataclass(frozen=True)
class Parking:
    parking_address: int
    kind = "PARKING"


Frame = Union[MethodCall, NativeMethod, Eliminated, Lock, Monitor, Parking]


def frame_address(frame: Frame) -> Optional[int]:
    """Return the decoded object address carried by lock-like frames."""

    if isinstance(frame, Lock):
        return frame.lock_address
    if isinstance(frame, Monitor):
        return frame.monitor_address
    if isinstance(frame, Parking):
        return frame.parking_address
    return None


# ---------------------------------------------------------------------------
# Records


@dataclass(frozen=True)
class CallFrame:
    """One stack line of a thread."""

    class_name: str
    method_name: Optional[str]
    line_number: Optional[int]
    frame: Frame
    file_name: Optional[str] = None

    @property
    def signature(self) -> Optional[str]:
        """Fully qualified ``class.method`` name, ``None`` for pseudo-frames."""

        if self.method_name is None:
            return None
        return f"{self.class_name}.{self.method_name}"

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "class_name": self.class_name,
            "method_name": self.method_name,
            "line_number": self.line_number,
            "file_name": self.file_name,
            "kind": self.frame.kind,
        }
        address = frame_address(self.frame)
        if address is not None:
            payload["address"] = f"0x{address:016x}"
        if isinstance(self.frame, Monitor):
            payload["action"] = self.frame.action.value
        return payload


@dataclass(frozen=True)
class Thread:
    """One parsed stanza: header fields plus frames, innermost first."""

    id: Optional[str]
    name: str
    daemon: bool
    prio: Optional[int]
    os_prio: int
    tid: int
    nid: int
    status: ThreadStatus
    address: Optional[str]
    frames: Tuple[CallFrame, ...] = ()
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    @property
    def top_method(self) -> Optional[str]:
        for call in self.frames:
            if call.method_name is not None:
                return call.signature
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "daemon": self.daemon,
            "prio": self.prio,
            "os_prio": self.os_prio,
            "tid": f"0x{self.tid:016x}",
            "nid": f"0x{self.nid:x}",
            "status": self.status.value,
            "address": self.address,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "frames": [call.as_dict() for call in self.frames],
        }


@dataclass
class Stanza:
    lines: List[str]
    start_line: int
    end_line: int


@dataclass
class StanzaFailure:
    """A stanza that was dropped, kept for forensic review."""

    path: str
    start_line: int
    header: str
    error: ParseError

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "start_line": self.start_line,
            "header": self.header,
            "error_type": type(self.error).__name__,
            "error": str(self.error),
        }


@dataclass
class ParsedDump:
    path: Path
    threads: List[Thread] = field(default_factory=list)
    failures: List[StanzaFailure] = field(default_factory=list)
    skipped: int = 0


# ---------------------------------------------------------------------------
# Line grammars


_HEADER_RE = re.compile(
    r'^"(?P<name>.*)"\s*'
    r"(?:#(?P<id>\d+)\s+)?"
    r"(?:\[(?P<os_thread>\d+)\]\s+)?"
    r"(?P<daemon>daemon\s+)?"
    r"(?:prio=(?P<prio>\S+)\s+)?"
    r"(?:os_prio=(?P<os_prio>\S+)\s+)?"
    r"(?:cpu=\S+\s+)?"
    r"(?:elapsed=\S+\s+)?"
    r"(?:tid=(?P<tid>\S+)\s*)?"
    r"(?:nid=(?P<nid>\S+)\s*)?"
    r"(?P<state>.*?)\s*"
    r"(?:\[(?P<address>[^\]]*)\])?\s*$"
)

_STATE_RE = re.compile(r"State:\s(\w+)")

_AT_FRAME_RE = re.compile(
    r"^at\s+"
    r"(?:[\w.\-]+@[\w.\-]+/|[\w.\-]*//)?"
    r"(?P<qualified>[^\s(]+)"
    r"\((?P<source>[^)]*)\)"
)

_ADDRESS_RE = re.compile(r"<(0x[0-9a-fA-F]+)>")
_OWNER_CLASS_RE = re.compile(r"\(a ([^)]+)\)")

UNKNOWN_SOURCE = "Unknown Source"


def _decode_hex(raw: str, field_name: str, line: str) -> int:
    text = raw.strip()
    if not text.lower().startswith("0x"):
        raise InvalidStatusError(f"Field {field_name} is not hexadecimal", line=line)
    try:
        return int(text[2:], 16)
    except ValueError as exc:
        raise InvalidStatusError(f"Field {field_name} is not hexadecimal", line=line) from exc


def _decode_nid(raw: str, line: str) -> int:
    # JDK 19+ prints the native id in decimal.
    text = raw.strip()
    if text.isdigit():
        return int(text)
    return _decode_hex(text, "nid", line)


def _decode_int(raw: Optional[str], field_name: str, line: str) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidStatusError(f"Field {field_name} is not an integer", line=line) from exc


def status_from_header(text: str) -> ThreadStatus:
    """Derive a status from the free text of a header-only stanza."""

    for needle, status in _HEADER_STATUS_KEYWORDS:
        if needle in text:
            return status
    return ThreadStatus.UNKNOWN


def parse_state_line(line: str) -> ThreadStatus:
    match = _STATE_RE.search(line)
    if match is None:
        raise ParseError("Expected a thread state line", line=line)
    status = _STATE_WORDS.get(match.group(1))
    if status is None:
        raise IllegalStatusError(f"Illegal thread state {match.group(1)}", line=line)
    return status


def parse_header(line: str) -> Dict[str, Any]:
    """Decode a stanza header into its fields."""

    text = line.strip()
    match = _HEADER_RE.match(text)
    if match is None:
        raise ParseError("Unrecognized thread header", line=line)

    if match.group("tid") is None:
        raise MissingFieldError("tid", line=line)
    if match.group("nid") is None:
        raise MissingFieldError("nid", line=line)

    display_id = match.group("id")
    return {
        "id": f"#{display_id}" if display_id is not None else None,
        "name": match.group("name"),
        "daemon": match.group("daemon") is not None,
        "prio": _decode_int(match.group("prio"), "prio", line),
        "os_prio": _decode_int(match.group("os_prio"), "os_prio", line) or 0,
        "tid": _decode_hex(match.group("tid"), "tid", line),
        "nid": _decode_nid(match.group("nid"), line),
        "state_text": match.group("state") or "",
        "address": match.group("address") or None,
    }


def _parse_at_frame(text: str) -> CallFrame:
    match = _AT_FRAME_RE.match(text)
    if match is None:
        raise ParseError("Unrecognized call frame", line=text)

    qualified = match.group("qualified")
    source = match.group("source").strip()
    class_name, _, method_name = qualified.rpartition(".")
    if not class_name:
        class_name, method_name = UNKNOWN_SOURCE, qualified

    if "Native Method" in source:
        return CallFrame(
            class_name=class_name,
            method_name=method_name,
            line_number=None,
            frame=NativeMethod(),
            file_name="Native Method",
        )

    file_name, _, line_part = source.partition(":")
    line_number: Optional[int] = None
    if line_part:
        try:
            line_number = int(line_part)
        except ValueError as exc:
            raise ParseError("Invalid line number in call frame", line=text) from exc
    return CallFrame(
        class_name=class_name,
        method_name=method_name,
        line_number=line_number,
        frame=MethodCall(),
        file_name=file_name or None,
    )


def _extract_address(text: str) -> int:
    match = _ADDRESS_RE.search(text)
    if match is None:
        raise UnknownFrameError("Unknown frame, no object address", line=text)
    return int(match.group(1), 16)


def _parse_lock_frame(text: str) -> CallFrame:
    tokens = text.split()
    if len(tokens) < 2:
        raise UnknownFrameError("Unknown frame", line=text)

    owner = _OWNER_CLASS_RE.search(text)
    class_name = owner.group(1).strip() if owner else UNKNOWN_SOURCE

    keyword = tokens[1]
    frame: Frame
    if keyword == "locked":
        frame = Lock(lock_address=_extract_address(text))
    elif keyword == "waiting":
        if "waiting to lock" in text:
            action = MonitorAction.WAITING_TO_LOCK
        elif "waiting on" in text:
            action = MonitorAction.WAITING_ON
        else:
            action = MonitorAction.LOCKED
        frame = Monitor(monitor_address=_extract_address(text), action=action)
    elif keyword == "parking":
        frame = Parking(parking_address=_extract_address(text))
    elif keyword == "eliminated":
        frame = Eliminated()
    else:
        raise UnknownFrameError("Unknown frame", line=text)

    return CallFrame(class_name=class_name, method_name=None, line_number=None, frame=frame)


def parse_frame(line: str) -> CallFrame:
    """Classify and decode one stack line."""

    text = line.strip()
    if text.startswith("at "):
        return _parse_at_frame(text)
    if text.startswith("-"):
        return _parse_lock_frame(text)
    raise UnknownFrameError("Unknown frame", line=line)


# ---------------------------------------------------------------------------
# Stanza helpers


def is_system_thread(lines: Sequence[str]) -> bool:
    """Single-line stanzas of VM/GC threads carry no application stack."""

    if len(lines) != 1:
        return False
    return any(marker in lines[0] for marker in SYSTEM_THREAD_MARKERS)


def parse_stanza(
    lines: Sequence[str],
    *,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> Thread:
    """Turn one stanza into a :class:`Thread`; raises :class:`ParseError`."""

    if not lines:
        raise ParseError("Empty stanza")

    header = parse_header(lines[0])
    frames: List[CallFrame] = []
    if len(lines) == 1:
        status = status_from_header(header["state_text"])
    else:
        status = parse_state_line(lines[1])
        for raw in lines[2:]:
            if not raw.strip():
                continue
            frames.append(parse_frame(raw))

    return Thread(
        id=header["id"],
        name=header["name"],
        daemon=header["daemon"],
        prio=header["prio"],
        os_prio=header["os_prio"],
        tid=header["tid"],
        nid=header["nid"],
        status=status,
        address=header["address"],
        frames=tuple(frames),
        start_line=start_line,
        end_line=end_line,
    )


def split_stanzas(lines: Iterable[str]) -> Iterator[Stanza]:
    """Group dump lines into stanzas.

    A line containing ``nid=`` opens a stanza; a blank line closes collection
    until the next header, which leaves out banners and the "Locked ownable
    synchronizers" blocks that follow a stack.
    """

    current: List[str] = []
    start = 0
    last = 0
    collecting = False
    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if not line.strip():
            collecting = False
            continue
        if "nid=" in line:
            if current:
                yield Stanza(lines=current, start_line=start, end_line=last)
            current = []
            start = line_number
            collecting = True
        if collecting:
            current.append(line)
            last = line_number
    if current:
        yield Stanza(lines=current, start_line=start, end_line=last)


# ---------------------------------------------------------------------------
# Public parsing API


def parse_lines(lines: Iterable[str], *, source: str = "<memory>") -> ParsedDump:
    """Parse every stanza in *lines*, collecting failures instead of raising."""

    result = ParsedDump(path=Path(source))
    for stanza in split_stanzas(lines):
        if is_system_thread(stanza.lines):
            result.skipped += 1
            continue
        try:
            thread = parse_stanza(
                stanza.lines, start_line=stanza.start_line, end_line=stanza.end_line
            )
        except ParseError as exc:
            LOGGER.warning(
                "Dropping stanza at %s:%d (%s): %s",
                source,
                stanza.start_line,
                type(exc).__name__,
                exc,
            )
            result.failures.append(
                StanzaFailure(
                    path=source,
                    start_line=stanza.start_line,
                    header=stanza.lines[0],
                    error=exc,
                )
            )
            continue
        result.threads.append(thread)
    return result


def parse_thread_dump(filepath: Path) -> ParsedDump:
    """Parse a thread-dump file with the best-effort stanza contract."""

    path = Path(filepath)
    start_time = time.perf_counter()
    with path.open("r", encoding="utf-8", errors="ignore") as handle:
        result = parse_lines(handle, source=str(path))
    result.path = path
    LOGGER.info(
        "Parsed %s: threads=%d failed=%d system=%d in %.2fs",
        path,
        len(result.threads),
        len(result.failures),
        result.skipped,
        time.perf_counter() - start_time,
    )
    return result


def parse_thread_dumps(
    paths: Sequence[Path], *, max_workers: Optional[int] = None
) -> List[ParsedDump]:
    """Parse several dump files concurrently; unreadable files are reported, not raised."""

    results: List[ParsedDump] = []
    if not paths:
        return results
    with create_thread_pool(max_workers, prefix="dump-parse") as pool:
        futures = [(path, pool.submit(parse_thread_dump, path)) for path in paths]
        for path, future in futures:
            try:
                results.append(future.result())
            except OSError as exc:
                LOGGER.warning("Failed to read thread dump %s: %s", path, exc)
                failed = ParsedDump(path=Path(path))
                failed.failures.append(
                    StanzaFailure(
                        path=str(path),
                        start_line=0,
                        header="",
                        error=ParseError(f"Unreadable file: {exc}"),
                    )
                )
                results.append(failed)
    return results
