"""
Cache schema — tables, additive migrations, indexes.

The on-disk layout is the compatibility contract with existing caches:

    feeds(id, title, feed_url, site_url, folder_name, updated_at)
    entries(id, title, url, author, summary, content, feed_id,
            published_at, fetched_at, is_unread, is_starred)
    app_state(key, value, updated_at)
    entries_fts(title, author, summary, content, url)   -- optional

Migrations only ever add. Each one runs on every startup and a column
that already exists counts as applied.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Optional

from ..models import EntryFilter, format_timestamp, parse_timestamp

logger = logging.getLogger("feedsync.cache.schema")

BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS feeds (
  id INTEGER PRIMARY KEY,
  title TEXT NOT NULL,
  feed_url TEXT,
  site_url TEXT,
  folder_name TEXT,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
  id INTEGER PRIMARY KEY,
  title TEXT NOT NULL,
  url TEXT NOT NULL,
  author TEXT,
  summary TEXT,
  content TEXT,
  feed_id INTEGER NOT NULL,
  published_at TEXT NOT NULL,
  fetched_at TEXT NOT NULL,
  is_unread INTEGER NOT NULL DEFAULT 0,
  is_starred INTEGER NOT NULL DEFAULT 0,
  FOREIGN KEY(feed_id) REFERENCES feeds(id)
);

CREATE TABLE IF NOT EXISTS app_state (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""

FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
  title,
  author,
  summary,
  content,
  url
);
"""

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class ColumnMigration:
    """Add ``column`` to ``table`` unless it is already there."""

    table: str
    column: str
    type: str
    default: Optional[str] = None
    not_null: bool = False

    @property
    def declaration(self) -> str:
        parts = [self.type]
        if self.not_null:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)

    @property
    def statement(self) -> str:
        for name in (self.table, self.column):
            if not _IDENTIFIER.match(name):
                raise ValueError(f"invalid identifier in migration: {name!r}")
        return f"ALTER TABLE {self.table} ADD COLUMN {self.column} {self.declaration}"


# Ordered. Append only.
COLUMN_MIGRATIONS: tuple[ColumnMigration, ...] = (
    ColumnMigration("entries", "is_unread", "INTEGER", default="0", not_null=True),
    ColumnMigration("entries", "is_starred", "INTEGER", default="0", not_null=True),
    ColumnMigration("entries", "content", "TEXT"),
    ColumnMigration("feeds", "folder_name", "TEXT"),
)

INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_entries_published_at ON entries(published_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_entries_unread_published ON entries(is_unread, published_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_entries_starred_published ON entries(is_starred, published_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_entries_feed_id ON entries(feed_id)",
    "CREATE INDEX IF NOT EXISTS idx_feeds_title ON feeds(title)",
    "CREATE INDEX IF NOT EXISTS idx_feeds_folder_name ON feeds(folder_name)",
)

# Shared by listings and both search backends.
ENTRY_SELECT = """
SELECT e.id, e.title, e.url, e.author, e.summary, e.content, e.feed_id,
       e.published_at, e.fetched_at, e.is_unread, e.is_starred,
       COALESCE(f.title, '') AS feed_title,
       COALESCE(f.folder_name, '') AS feed_folder
FROM entries e
LEFT JOIN feeds f ON f.id = e.feed_id
"""

ENTRY_ORDER = "ORDER BY e.published_at DESC, e.id DESC"


def filter_predicate(entry_filter: EntryFilter) -> Optional[str]:
    """SQL predicate for a filter, or None for ``all``."""
    if entry_filter is EntryFilter.UNREAD:
        return "e.is_unread = 1"
    if entry_filter is EntryFilter.STARRED:
        return "e.is_starred = 1"
    return None


def apply_column_migrations(
    conn: sqlite3.Connection,
    migrations: tuple[ColumnMigration, ...] = COLUMN_MIGRATIONS,
) -> list[ColumnMigration]:
    """Apply every migration, treating existing columns as success.

    Returns:
        The migrations that actually added a column this time.
    """
    applied = []
    for migration in migrations:
        try:
            conn.execute(migration.statement)
        except sqlite3.OperationalError as exc:
            if "duplicate column name" in str(exc).lower():
                continue
            raise
        logger.info("Added column %s.%s", migration.table, migration.column)
        applied.append(migration)
    return applied


def ensure_indexes(conn: sqlite3.Connection) -> None:
    for statement in INDEXES:
        conn.execute(statement)


TIMESTAMP_WIDTH = len("2006-01-02T15:04:05.000000000Z")


def normalize_timestamps(conn: sqlite3.Connection) -> int:
    """Rewrite entry timestamps that are not in the fixed-width form.

    Older caches hold trimmed values such as ``...:05Z``, which sort
    after ``...:05.5Z`` as text. Unparseable values are left alone and
    surface as read errors. The caller owns the transaction.

    Returns:
        Number of rows rewritten.
    """
    rows = conn.execute(
        "SELECT id, published_at, fetched_at FROM entries "
        "WHERE length(published_at) != ? OR length(fetched_at) != ?",
        (TIMESTAMP_WIDTH, TIMESTAMP_WIDTH),
    ).fetchall()
    rewritten = 0
    for entry_id, published, fetched in rows:
        try:
            published = format_timestamp(parse_timestamp(published))
            fetched = format_timestamp(parse_timestamp(fetched))
        except ValueError as exc:
            logger.warning("Leaving timestamps of entry %s as is: %s", entry_id, exc)
            continue
        conn.execute(
            "UPDATE entries SET published_at = ?, fetched_at = ? WHERE id = ?",
            (published, fetched, entry_id),
        )
        rewritten += 1
    return rewritten


def create_schema(conn: sqlite3.Connection) -> list[ColumnMigration]:
    """Create base tables, run migrations, build indexes."""
    conn.executescript(BASE_SCHEMA)
    applied = apply_column_migrations(conn)
    ensure_indexes(conn)
    return applied
