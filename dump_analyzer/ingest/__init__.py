"""Thread-dump parsing and ingest."""

from .thread_dump import (
    CallFrame,
    ParsedDump,
    StanzaFailure,
    Thread,
    ThreadStatus,
    parse_stanza,
    parse_thread_dump,
    parse_thread_dumps,
)

__all__ = [
    "CallFrame",
    "ParsedDump",
    "StanzaFailure",
    "Thread",
    "ThreadStatus",
    "parse_stanza",
    "parse_thread_dump",
    "parse_thread_dumps",
]
