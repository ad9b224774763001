"""Shared test fixtures for feedsync."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from feedsync.cache import CacheStore
from feedsync.client import RemoteClient
from feedsync.models import Entry, Subscription, Tagging
from feedsync.sync import SyncService

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(entry_id: int, minutes: int = 0, **fields) -> Entry:
    """Build an entry published ``minutes`` after BASE_TIME."""
    data = {
        "id": entry_id,
        "title": f"Entry {entry_id}",
        "url": f"https://example.com/{entry_id}",
        "feed_id": 10,
        "published_at": BASE_TIME + timedelta(minutes=minutes),
    }
    data.update(fields)
    return Entry(**data)


def fts5_available() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE probe USING fts5(x)")
        return True
    except sqlite3.Error:
        return False
    finally:
        conn.close()


requires_fts5 = pytest.mark.skipif(not fts5_available(), reason="sqlite built without fts5")


class FakeClient(RemoteClient):
    """In-memory remote service.

    ``pages`` maps page number to entries; ``catalog`` holds every entry
    the service can return by id. Set ``errors[method_name]`` to make a
    call fail. Every call is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.pages: dict[int, list[Entry]] = {}
        self.catalog: dict[int, Entry] = {}
        self.subscriptions: list[Subscription] = []
        self.taggings: list[Tagging] = []
        self.unread_ids: list[int] = []
        self.starred_ids: list[int] = []
        self.updated_ids: list[int] = []
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self.updated_since: Optional[datetime] = None
        self._lock = threading.Lock()

    def _record(self, name: str, *args) -> None:
        with self._lock:
            self.calls.append((name, *args))
        if name in self.errors:
            raise self.errors[name]

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def list_entries(self, page, per_page, *, ctx=None):
        self._record("list_entries", page, per_page)
        return [e.model_copy() for e in self.pages.get(page, [])]

    def list_entries_by_ids(self, ids, *, ctx=None):
        self._record("list_entries_by_ids", list(ids))
        return [self.catalog[i].model_copy() for i in ids if i in self.catalog]

    def list_subscriptions(self, *, ctx=None):
        self._record("list_subscriptions")
        return [s.model_copy() for s in self.subscriptions]

    def list_taggings(self, *, ctx=None):
        self._record("list_taggings")
        return list(self.taggings)

    def list_unread_entry_ids(self, *, ctx=None):
        self._record("list_unread_entry_ids")
        return list(self.unread_ids)

    def list_starred_entry_ids(self, *, ctx=None):
        self._record("list_starred_entry_ids")
        return list(self.starred_ids)

    def list_updated_entry_ids_since(self, since, *, ctx=None):
        self._record("list_updated_entry_ids_since", since)
        self.updated_since = since
        return list(self.updated_ids)

    def mark_entries_read(self, ids, *, ctx=None):
        self._record("mark_entries_read", list(ids))

    def mark_entries_unread(self, ids, *, ctx=None):
        self._record("mark_entries_unread", list(ids))

    def star_entries(self, ids, *, ctx=None):
        self._record("star_entries", list(ids))

    def unstar_entries(self, ids, *, ctx=None):
        self._record("unstar_entries", list(ids))

    def close(self) -> None:
        pass


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "feedsync.db"


@pytest.fixture
def store(db_path: Path):
    """An initialized substring-search store on disk."""
    s = CacheStore(db_path)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def client() -> FakeClient:
    """A fake remote with one feed and a two-entry first page."""
    c = FakeClient()
    c.subscriptions = [Subscription(id=10, title="Feed A", feed_url="https://a.example/feed")]
    c.pages[1] = [make_entry(1, minutes=1), make_entry(2, minutes=2)]
    for entry in c.pages[1]:
        c.catalog[entry.id] = entry
    return c


@pytest.fixture
def service(client: FakeClient, store: CacheStore) -> SyncService:
    return SyncService(client, store)
