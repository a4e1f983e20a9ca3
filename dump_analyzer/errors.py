"""Exception hierarchy shared by the parser, codec and storage layers."""

from __future__ import annotations

from typing import List, Optional


class AnalysisError(Exception):
    """Base class for every error raised by the analyzer."""


class ParseError(AnalysisError):
    """A thread-dump line or stanza could not be parsed."""

    def __init__(self, message: str, *, line: Optional[str] = None) -> None:
        super().__init__(message if line is None else f"{message}: {line!r}")
        self.line = line


class MissingFieldError(ParseError):
    """A mandatory header field (``tid=``/``nid=``) is absent."""

    def __init__(self, field: str, *, line: Optional[str] = None) -> None:
        super().__init__(f"Missing field {field}", line=line)
        self.field = field


class InvalidStatusError(ParseError):
    """A numeric header field (hex id, priority) could not be decoded."""


class IllegalStatusError(ParseError):
    """The word after ``State:`` is not a known thread state."""


class UnknownFrameError(ParseError):
    """A stack line has an unrecognized prefix or no ``<0x...>`` address."""


class DictionaryOverflowError(AnalysisError):
    """A codec page has no local ids left."""


class UnsupportedSourceError(AnalysisError):
    """An ingest source is neither a directory nor a readable dump/archive."""


class StorageError(AnalysisError):
    """A storage transaction failed."""


class BatchInsertError(StorageError):
    """One or more ingestion workers failed during ``batch_add``."""

    def __init__(self, table: str, errors: List[BaseException]) -> None:
        first = errors[0] if errors else None
        super().__init__(
            f"{len(errors)} worker(s) failed inserting into {table}: {first}"
        )
        self.table = table
        self.errors = list(errors)
