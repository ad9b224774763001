"""
Cache — the local SQLite projection of the remote feed account.

Entries, feeds and app state live in one database file. Text search
runs on substring matching or, when enabled, an fts5 index.
"""

from .store import DEFAULT_LIST_LIMIT, SYNC_CURSOR_KEY, CacheStore

__all__ = ["CacheStore", "DEFAULT_LIST_LIMIT", "SYNC_CURSOR_KEY"]
