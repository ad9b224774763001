"""
Cache Store -- the durable, queryable projection of the remote account.

One SQLite connection per store. Every batch write commits in a single
transaction; a failed batch leaves nothing behind. Rows are only ever
upserted, never deleted.

Usage:
    with CacheStore("~/.feedsync/feedsync.db", search_mode="fts") as store:
        store.initialize()
        store.save_entries(entries)
        unread = store.list_entries_by_filter(50, "unread")
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from ..context import CallContext, check_context
from ..errors import CacheReadError, CacheWriteError
from ..models import (
    CacheStats,
    Entry,
    EntryFilter,
    SearchMode,
    Subscription,
    coerce_filter,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from .schema import (
    ENTRY_ORDER,
    ENTRY_SELECT,
    create_schema,
    filter_predicate,
    normalize_timestamps,
)
from .search import FTSSearch, LikeSearch, register_functions

logger = logging.getLogger("feedsync.cache.store")

SYNC_CURSOR_KEY = "updated_entries_since"
DEFAULT_LIST_LIMIT = 1000

_SAVE_FEED_SQL = """
INSERT INTO feeds (id, title, feed_url, site_url, folder_name, updated_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
  title=excluded.title,
  feed_url=excluded.feed_url,
  site_url=excluded.site_url,
  folder_name=excluded.folder_name,
  updated_at=excluded.updated_at
"""

_SAVE_ENTRY_SQL = """
INSERT INTO entries (id, title, url, author, summary, content, feed_id,
                     published_at, fetched_at, is_unread, is_starred)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
  title=excluded.title,
  url=excluded.url,
  author=excluded.author,
  summary=excluded.summary,
  content=excluded.content,
  feed_id=excluded.feed_id,
  published_at=excluded.published_at,
  fetched_at=excluded.fetched_at,
  is_unread=excluded.is_unread,
  is_starred=excluded.is_starred
"""

_SAVE_STATE_SQL = """
INSERT INTO app_state (key, value, updated_at)
VALUES (?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
  value=excluded.value,
  updated_at=excluded.updated_at
"""


def _row_to_entry(row: sqlite3.Row) -> Entry:
    try:
        published = parse_timestamp(row["published_at"])
        fetched = parse_timestamp(row["fetched_at"]) if row["fetched_at"] else None
    except ValueError as exc:
        raise CacheReadError(f"parse entry {row['id']} timestamps", str(exc)) from exc
    return Entry(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        author=row["author"],
        summary=row["summary"],
        content=row["content"],
        feed_id=row["feed_id"],
        published_at=published,
        fetched_at=fetched,
        is_unread=bool(row["is_unread"]),
        is_starred=bool(row["is_starred"]),
        feed_title=row["feed_title"],
        feed_folder=row["feed_folder"],
    )


class CacheStore:
    """SQLite-backed cache of entries, feeds and app state.

    Args:
        path: Database file, or ``":memory:"``.
        search_mode: ``like`` (default) or ``fts``. An ``fts`` store that
            cannot build or query its index quietly becomes ``like``.
    """

    def __init__(
        self,
        path: Union[str, Path],
        search_mode: Union[SearchMode, str] = SearchMode.LIKE,
    ) -> None:
        self.path = str(path) if str(path) == ":memory:" else str(Path(path).expanduser())
        if isinstance(search_mode, SearchMode):
            mode = search_mode.value
        else:
            mode = str(search_mode or "").strip().lower()
        # Anything unrecognised means substring search.
        self._requested_mode = SearchMode.FTS if mode == "fts" else SearchMode.LIKE
        self._like = LikeSearch()
        self._fts: Optional[FTSSearch] = None
        self._lock = threading.RLock()

        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                self.path, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise CacheWriteError("open sqlite database", str(exc)) from exc
        self._conn.row_factory = sqlite3.Row
        register_functions(self._conn)

    def __enter__(self) -> "CacheStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def search_mode(self) -> SearchMode:
        """The backend searches actually use right now."""
        backend = self._fts if self._fts is not None else self._like
        return backend.mode

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _connection(self, stage: str, error: type) -> sqlite3.Connection:
        if self._conn is None:
            raise error(stage, "store is closed")
        return self._conn

    @contextmanager
    def _transaction(
        self, stage: str, ctx: Optional[CallContext] = None
    ) -> Iterator[sqlite3.Connection]:
        """Run the block inside BEGIN/COMMIT, rolling back on any error."""
        check_context(ctx, stage)
        with self._lock:
            conn = self._connection(stage, CacheWriteError)
            try:
                conn.execute("BEGIN")
                yield conn
                conn.execute("COMMIT")
            except BaseException as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(exc, sqlite3.Error):
                    raise CacheWriteError(stage, str(exc)) from exc
                raise

    @contextmanager
    def _reading(
        self, stage: str, ctx: Optional[CallContext] = None
    ) -> Iterator[sqlite3.Connection]:
        check_context(ctx, stage)
        with self._lock:
            conn = self._connection(stage, CacheReadError)
            try:
                yield conn
            except sqlite3.Error as exc:
                raise CacheReadError(stage, str(exc)) from exc

    def _downgrade(self, reason: str, exc: Exception) -> None:
        if self._fts is not None:
            logger.warning("Full-text search disabled (%s): %s", reason, exc)
        self._fts = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self, *, ctx: Optional[CallContext] = None) -> None:
        """Create or upgrade the schema. Safe to call on every start.

        Raises:
            CacheWriteError: If the base schema cannot be created.
        """
        check_context(ctx, "initialize cache")
        with self._lock:
            conn = self._connection("create schema", CacheWriteError)
            try:
                applied = create_schema(conn)
            except (sqlite3.Error, ValueError) as exc:
                raise CacheWriteError("create schema", str(exc)) from exc
            if applied:
                logger.info("Applied %d column migration(s)", len(applied))

            with self._transaction("normalize entry timestamps") as tx:
                rewritten = normalize_timestamps(tx)
            if rewritten:
                logger.info("Normalized timestamps of %d cached entries", rewritten)

            if self._requested_mode is SearchMode.FTS:
                fts = FTSSearch(self._like)
                try:
                    fts.initialize(conn)
                except sqlite3.Error as exc:
                    logger.warning("Full-text search unavailable, using substring search: %s", exc)
                    self._fts = None
                else:
                    self._fts = fts

    def check_writable(self) -> None:
        """Prove the database accepts writes.

        Raises:
            CacheWriteError: If the file is read-only or locked.
        """
        with self._transaction("check cache writable") as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS healthcheck "
                "(id INTEGER PRIMARY KEY, touched_at TEXT NOT NULL)"
            )
            conn.execute(
                "INSERT INTO healthcheck (touched_at) VALUES (?)",
                (format_timestamp(utcnow()),),
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_subscriptions(
        self, subscriptions: Iterable[Subscription], *, ctx: Optional[CallContext] = None
    ) -> None:
        """Upsert feeds, including the derived folder, in one transaction."""
        now = format_timestamp(utcnow())
        with self._transaction("save subscriptions", ctx) as conn:
            conn.executemany(
                _SAVE_FEED_SQL,
                [
                    (sub.id, sub.title, sub.feed_url, sub.site_url, sub.folder or None, now)
                    for sub in subscriptions
                ],
            )

    def save_entries(
        self, entries: Iterable[Entry], *, ctx: Optional[CallContext] = None
    ) -> None:
        """Upsert entries. Every mutable column is overwritten."""
        entries = list(entries)
        now = format_timestamp(utcnow())
        with self._transaction("save entries", ctx) as conn:
            conn.executemany(
                _SAVE_ENTRY_SQL,
                [
                    (
                        entry.id,
                        entry.title,
                        entry.url,
                        entry.author,
                        entry.summary,
                        entry.content,
                        entry.feed_id,
                        format_timestamp(entry.published_at),
                        now,
                        int(entry.is_unread),
                        int(entry.is_starred),
                    )
                    for entry in entries
                ],
            )

        if not entries:
            return
        with self._lock:
            # Read once: a failed search on another thread may downgrade.
            fts = self._fts
            if fts is None:
                return
            try:
                with self._transaction("index entries") as conn:
                    fts.index_entries(conn, entries)
            except CacheWriteError as exc:
                self._downgrade("index update failed", exc)

    def save_entry_states(
        self,
        unread_ids: Iterable[int],
        starred_ids: Iterable[int],
        *,
        ctx: Optional[CallContext] = None,
    ) -> None:
        """Replace all unread/starred flags with exactly the given sets.

        Reset and set happen in one transaction, so readers see either
        the old membership or the new one.
        """
        unread = [(int(i),) for i in unread_ids]
        starred = [(int(i),) for i in starred_ids]
        with self._transaction("save entry states", ctx) as conn:
            conn.execute("UPDATE entries SET is_unread = 0, is_starred = 0")
            conn.executemany("UPDATE entries SET is_unread = 1 WHERE id = ?", unread)
            conn.executemany("UPDATE entries SET is_starred = 1 WHERE id = ?", starred)

    def set_entry_unread(
        self, entry_id: int, unread: bool, *, ctx: Optional[CallContext] = None
    ) -> None:
        with self._transaction(f"set entry unread state for {entry_id}", ctx) as conn:
            conn.execute(
                "UPDATE entries SET is_unread = ? WHERE id = ?", (int(unread), entry_id)
            )

    def set_entry_starred(
        self, entry_id: int, starred: bool, *, ctx: Optional[CallContext] = None
    ) -> None:
        with self._transaction(f"set entry starred state for {entry_id}", ctx) as conn:
            conn.execute(
                "UPDATE entries SET is_starred = ? WHERE id = ?", (int(starred), entry_id)
            )

    # ------------------------------------------------------------------
    # App state
    # ------------------------------------------------------------------

    def get_app_state(self, key: str, *, ctx: Optional[CallContext] = None) -> Optional[str]:
        """Value stored under ``key``, or None if never written."""
        with self._reading(f"load app_state key {key!r}", ctx) as conn:
            row = conn.execute("SELECT value FROM app_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_app_state(self, key: str, value: str, *, ctx: Optional[CallContext] = None) -> None:
        with self._transaction(f"save app_state key {key!r}", ctx) as conn:
            conn.execute(_SAVE_STATE_SQL, (key, value, format_timestamp(utcnow())))

    def get_sync_cursor(
        self, key: str = SYNC_CURSOR_KEY, *, ctx: Optional[CallContext] = None
    ) -> Optional[datetime]:
        """Timestamp of the last successful reconciliation.

        Returns:
            The cursor, or None if the cache was never synced.

        Raises:
            CacheReadError: If the stored value is not a timestamp.
        """
        value = self.get_app_state(key, ctx=ctx)
        if value is None:
            return None
        try:
            return parse_timestamp(value)
        except ValueError as exc:
            raise CacheReadError(
                f"parse sync cursor {key!r} value {value!r}", str(exc)
            ) from exc

    def set_sync_cursor(
        self, value: datetime, key: str = SYNC_CURSOR_KEY, *, ctx: Optional[CallContext] = None
    ) -> None:
        self.set_app_state(key, format_timestamp(value), ctx=ctx)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_entries(self, limit: int, *, ctx: Optional[CallContext] = None) -> list[Entry]:
        return self.list_entries_by_filter(limit, EntryFilter.ALL, ctx=ctx)

    def list_entries_by_filter(
        self,
        limit: int,
        entry_filter: Union[EntryFilter, str] = EntryFilter.ALL,
        *,
        ctx: Optional[CallContext] = None,
    ) -> list[Entry]:
        """Cached entries, newest first, joined with feed title and folder.

        Raises:
            ValidationError: For an unknown filter.
        """
        entry_filter = coerce_filter(entry_filter)
        if limit < 1:
            limit = DEFAULT_LIST_LIMIT
        sql = ENTRY_SELECT
        predicate = filter_predicate(entry_filter)
        if predicate:
            sql += f"WHERE {predicate}\n"
        sql += ENTRY_ORDER + "\nLIMIT ?"
        with self._reading("query entries", ctx) as conn:
            rows = conn.execute(sql, (limit,)).fetchall()
        return [_row_to_entry(row) for row in rows]

    def search_entries_by_filter(
        self,
        limit: int,
        entry_filter: Union[EntryFilter, str],
        query: str,
        *,
        ctx: Optional[CallContext] = None,
    ) -> list[Entry]:
        """Search cached entries. A blank query is a plain filter listing."""
        entry_filter = coerce_filter(entry_filter)
        query = (query or "").strip()
        if not query:
            return self.list_entries_by_filter(limit, entry_filter, ctx=ctx)
        if limit < 1:
            limit = DEFAULT_LIST_LIMIT

        with self._reading("search entries", ctx) as conn:
            if self._fts is not None:
                try:
                    rows = self._fts.search(conn, limit, entry_filter, query)
                except sqlite3.Error as exc:
                    self._downgrade("query failed", exc)
                else:
                    return [_row_to_entry(row) for row in rows]
            rows = self._like.search(conn, limit, entry_filter, query)
        return [_row_to_entry(row) for row in rows]

    def get_entry(self, entry_id: int, *, ctx: Optional[CallContext] = None) -> Optional[Entry]:
        """A single cached entry, or None if it is not cached."""
        with self._reading(f"load entry {entry_id}", ctx) as conn:
            row = conn.execute(ENTRY_SELECT + "WHERE e.id = ?", (entry_id,)).fetchone()
        return _row_to_entry(row) if row else None

    def existing_entry_ids(
        self, ids: Iterable[int], *, ctx: Optional[CallContext] = None
    ) -> set[int]:
        """Subset of ``ids`` already present in the cache."""
        wanted = sorted({int(i) for i in ids})
        found: set[int] = set()
        with self._reading("query cached entry ids", ctx) as conn:
            # Stay under SQLite's bound-parameter limit.
            for start in range(0, len(wanted), 500):
                chunk = wanted[start:start + 500]
                marks = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id FROM entries WHERE id IN ({marks})", chunk
                ).fetchall()
                found.update(row["id"] for row in rows)
        return found

    def stats(self, *, ctx: Optional[CallContext] = None) -> CacheStats:
        """Counts and sync status for status displays."""
        with self._reading("query cache stats", ctx) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS entries, "
                "COALESCE(SUM(is_unread), 0) AS unread, "
                "COALESCE(SUM(is_starred), 0) AS starred "
                "FROM entries"
            ).fetchone()
            feeds = conn.execute("SELECT COUNT(*) FROM feeds").fetchone()[0]
        return CacheStats(
            entries=row["entries"],
            unread=row["unread"],
            starred=row["starred"],
            feeds=feeds,
            last_sync=self.get_sync_cursor(ctx=ctx),
            search_mode=self.search_mode,
            path=self.path,
        )
