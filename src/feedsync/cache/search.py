"""
Text-search backends for the cache store.

``LikeSearch`` is always correct: a case-insensitive substring match
across every text column plus the joined feed title and folder.

``FTSSearch`` uses an SQLite fts5 index over the entry text and prefix
matches every query token. Feed title and folder are not in the index,
so they are still matched by substring. The store owns the fallback
policy: any sqlite error from this backend downgrades the store to
``LikeSearch`` for good.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from ..models import Entry, EntryFilter, SearchMode
from .schema import ENTRY_ORDER, ENTRY_SELECT, FTS_SCHEMA, filter_predicate


def register_functions(conn: sqlite3.Connection) -> None:
    """Install the SQL functions substring search relies on.

    SQLite's built-in ``LOWER`` only folds ASCII, so matching goes
    through Python's ``str.casefold`` on both sides.
    """
    conn.create_function("casefold", 1, _casefold, deterministic=True)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


_LIKE_COLUMNS = (
    "e.title",
    "COALESCE(e.author, '')",
    "COALESCE(e.summary, '')",
    "COALESCE(e.content, '')",
    "e.url",
    "COALESCE(f.title, '')",
    "COALESCE(f.folder_name, '')",
)


def like_pattern(query: str) -> str:
    """Casefolded ``%query%`` with LIKE wildcards escaped."""
    escaped = (
        query.casefold()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def _like(column: str) -> str:
    return f"casefold({column}) LIKE ? ESCAPE '\\'"


def build_fts_query(query: str) -> Optional[str]:
    """Turn free text into an fts5 prefix query.

    ``"Formula-1 news!"`` becomes ``"formula1* AND news*"``.

    Returns:
        The MATCH expression, or None when no token survives.
    """
    tokens = []
    for raw in query.lower().split():
        token = "".join(ch for ch in raw if ch.isalnum())
        if token:
            tokens.append(token + "*")
    if not tokens:
        return None
    return " AND ".join(tokens)


def _run(
    conn: sqlite3.Connection,
    where: list[str],
    args: list,
    limit: int,
) -> list[sqlite3.Row]:
    sql = ENTRY_SELECT
    if where:
        sql += "WHERE " + " AND ".join(where) + "\n"
    sql += ENTRY_ORDER + "\nLIMIT ?"
    return conn.execute(sql, [*args, limit]).fetchall()


class SearchBackend(ABC):
    """Strategy for matching cached entries against a text query."""

    mode: SearchMode

    @abstractmethod
    def search(
        self,
        conn: sqlite3.Connection,
        limit: int,
        entry_filter: EntryFilter,
        query: str,
    ) -> list[sqlite3.Row]:
        """Return matching entry rows, newest first."""


class LikeSearch(SearchBackend):
    """Substring search over entry text and feed metadata."""

    mode = SearchMode.LIKE

    def search(self, conn, limit, entry_filter, query):
        where = []
        predicate = filter_predicate(entry_filter)
        if predicate:
            where.append(predicate)
        where.append("(" + " OR ".join(_like(col) for col in _LIKE_COLUMNS) + ")")
        pattern = like_pattern(query)
        return _run(conn, where, [pattern] * len(_LIKE_COLUMNS), limit)


class FTSSearch(SearchBackend):
    """fts5 prefix search, rowid aligned with ``entries.id``."""

    mode = SearchMode.FTS

    def __init__(self, fallback: Optional[LikeSearch] = None) -> None:
        self._fallback = fallback or LikeSearch()

    def initialize(self, conn: sqlite3.Connection) -> None:
        """Create the index and rebuild it from the entries table.

        Raises:
            sqlite3.Error: If fts5 is unavailable or the rebuild fails.
        """
        conn.executescript(FTS_SCHEMA)
        conn.execute("BEGIN")
        try:
            conn.execute("DELETE FROM entries_fts")
            conn.execute(
                """
INSERT INTO entries_fts(rowid, title, author, summary, content, url)
SELECT id, title, COALESCE(author, ''), COALESCE(summary, ''), COALESCE(content, ''), url
FROM entries
"""
            )
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise

    def index_entries(self, conn: sqlite3.Connection, entries: Iterable[Entry]) -> None:
        """Replace the index rows for ``entries``. Caller owns the transaction."""
        for entry in entries:
            conn.execute("DELETE FROM entries_fts WHERE rowid = ?", (entry.id,))
            conn.execute(
                "INSERT INTO entries_fts(rowid, title, author, summary, content, url) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.title,
                    entry.author,
                    entry.summary,
                    entry.content or "",
                    entry.url,
                ),
            )

    def search(self, conn, limit, entry_filter, query):
        match = build_fts_query(query)
        if match is None:
            return self._fallback.search(conn, limit, entry_filter, query)

        where = []
        predicate = filter_predicate(entry_filter)
        if predicate:
            where.append(predicate)
        where.append(
            "(e.id IN (SELECT rowid FROM entries_fts WHERE entries_fts MATCH ?) OR "
            + _like("COALESCE(f.title, '')")
            + " OR "
            + _like("COALESCE(f.folder_name, '')")
            + ")"
        )
        pattern = like_pattern(query)
        return _run(conn, where, [match, pattern, pattern], limit)
