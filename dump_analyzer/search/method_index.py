"""Per-workspace method-name search over DuckDB."""

from __future__ import annotations

import time
from typing import Iterable, List, Optional

import duckdb

from ..config import settings
from ..utils.logging_utils import get_logger

LOGGER = get_logger("search.method_index")

_REGEX_ESCAPES = set(".()[]{}\\+^$|")

_INSERT_SQL = """
    INSERT INTO method_index (workspace, method_raw)
    SELECT CAST(? AS VARCHAR), CAST(? AS VARCHAR)
    WHERE NOT EXISTS (
        SELECT 1 FROM method_index WHERE workspace = ? AND method_raw = ?
    )
"""

_PATTERN_SQL = """
    SELECT method_raw
    FROM method_index
    WHERE workspace = ? AND regexp_full_match(method_raw, ?)
    ORDER BY method_raw
    LIMIT ?
"""

# A name matches when the query is close to the whole name or to any of its
# ``.``/``$`` separated tokens.
_FUZZY_SQL = """
    WITH candidates AS (
        SELECT method_raw, lower(method_raw) AS lowered
        FROM method_index
        WHERE workspace = ?
    ),
    tokens AS (
        SELECT method_raw, lowered AS token FROM candidates
        UNION ALL
        SELECT method_raw, unnest(string_split_regex(lowered, '[.$]')) AS token
        FROM candidates
    )
    SELECT method_raw, MIN(levenshtein(token, ?)) AS distance
    FROM tokens
    GROUP BY method_raw
    HAVING MIN(levenshtein(token, ?)) <= ?
    ORDER BY distance, method_raw
    LIMIT ?
"""


def contains_wildcard(query: str) -> bool:
    return "*" in query or "?" in query


def wildcard_to_regex(query: str) -> str:
    """Translate ``*``/``?`` wildcards into an anchored regular expression."""

    parts: List[str] = []
    for char in query:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char in _REGEX_ESCAPES:
            parts.append("\\" + char)
        else:
            parts.append(char)
    pattern = "".join(parts)
    if pattern.endswith(".*"):
        pattern = pattern[:-2] + ".+"
    return f"^{pattern}$"


class MethodSearchIndex:
    """Full-text style lookup of the method signatures seen in one workspace."""

    def __init__(self, connection: duckdb.DuckDBPyConnection, workspace: str) -> None:
        self.connection = connection
        self.workspace = workspace

    def index(self, method_name: str) -> None:
        self.connection.execute(
            _INSERT_SQL, [self.workspace, method_name, self.workspace, method_name]
        )

    def index_many(self, names: Iterable[str]) -> int:
        distinct = sorted(set(name for name in names if name))
        if not distinct:
            return 0
        start = time.perf_counter()
        cursor = self.connection.cursor()
        try:
            cursor.begin()
            try:
                cursor.executemany(
                    _INSERT_SQL,
                    [[self.workspace, name, self.workspace, name] for name in distinct],
                )
                cursor.commit()
            except duckdb.Error:
                cursor.rollback()
                raise
        finally:
            cursor.close()
        LOGGER.info(
            "Indexed %d method name(s) for workspace %s in %.2fs",
            len(distinct),
            self.workspace,
            time.perf_counter() - start,
        )
        return len(distinct)

    def search(
        self,
        query: str,
        fuzziness: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        """Return matching method names, best match first."""

        text = query.strip()
        if not text:
            return []
        max_edits = settings.search_fuzziness if fuzziness is None else int(fuzziness)
        top = settings.search_limit if limit is None else int(limit)

        if contains_wildcard(text):
            pattern = wildcard_to_regex(text)
            LOGGER.debug("Wildcard search %r as %s", text, pattern)
            rows = self.connection.execute(
                _PATTERN_SQL, [self.workspace, pattern, top]
            ).fetchall()
        else:
            lowered = text.lower()
            rows = self.connection.execute(
                _FUZZY_SQL, [self.workspace, lowered, lowered, max_edits, top]
            ).fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        row = self.connection.execute(
            "SELECT COUNT(*) FROM method_index WHERE workspace = ?", [self.workspace]
        ).fetchone()
        return int(row[0]) if row else 0

    def clean(self) -> None:
        self.connection.execute(
            "DELETE FROM method_index WHERE workspace = ?", [self.workspace]
        )
        LOGGER.info("Cleared method index for workspace %s", self.workspace)
