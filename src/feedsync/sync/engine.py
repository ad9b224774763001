"""
Sync Engine -- reconciles the local cache with the remote feed service.

Two reconciliation strategies, because the remote protocol is
asymmetric:

    full         subscriptions + taggings + unread ids + starred ids,
                 fetched in parallel, then full-replace of flags
    incremental  entries changed since the cursor are upserted, then
                 the (always complete) unread/starred sets full-replace
                 the flags

The cursor only moves after a reconciliation has been written. A failed
sync leaves it where it was, so retrying is always safe. Writes that
already committed in earlier steps stay committed.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from ..cache.store import SYNC_CURSOR_KEY, CacheStore
from ..client import RemoteClient
from ..context import CallContext, check_context
from ..errors import CacheError, FeedsyncError, SyncCancelledError, wrap_stage
from ..models import (
    Entry,
    EntryFilter,
    Subscription,
    Tagging,
    UIPreferences,
    coerce_filter,
    utcnow,
)
from .. import preferences

logger = logging.getLogger("feedsync.sync.engine")

T = TypeVar("T")

DEFAULT_CACHE_LIMIT = 1000


def apply_taggings(
    subscriptions: list[Subscription], taggings: Iterable[Tagging]
) -> list[Subscription]:
    """Set each feed's folder to its case-insensitively smallest tag.

    Blank tag names are ignored. Untagged feeds get no folder. The
    subscriptions are updated in place and returned.
    """
    folders: dict[int, str] = {}
    for tagging in taggings:
        name = tagging.name.strip()
        if not name:
            continue
        current = folders.get(tagging.feed_id)
        if current is None or name.lower() < current.lower():
            folders[tagging.feed_id] = name
    for sub in subscriptions:
        sub.folder = folders.get(sub.id)
    return subscriptions


class SyncService:
    """Orchestrates cache reads, remote mutations and reconciliation.

    Args:
        client: Remote feed service.
        store: Initialized cache store.
        cursor_key: app_state key holding the sync cursor.
    """

    def __init__(
        self,
        client: RemoteClient,
        store: CacheStore,
        cursor_key: str = SYNC_CURSOR_KEY,
    ) -> None:
        self.client = client
        self.store = store
        self.cursor_key = cursor_key
        # Loaded from the store on first sync, then kept in step with it.
        self.last_state_sync_at: Optional[datetime] = None
        self._cursor_loaded = False
        self._sync_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _stage(
        stage: str,
        call: Callable[..., T],
        *args: Any,
        ctx: Optional[CallContext] = None,
    ) -> T:
        """Run one remote or cache call, tagging failures with ``stage``."""
        check_context(ctx, stage)
        try:
            return call(*args, ctx=ctx)
        except FeedsyncError as exc:
            raise wrap_stage(exc, stage) from exc

    def _acquire(self, ctx: Optional[CallContext]) -> None:
        timeout = -1 if ctx is None or ctx.remaining() is None else ctx.remaining()
        if not self._sync_lock.acquire(timeout=timeout):
            raise SyncCancelledError("wait for running sync", "deadline exceeded")

    def _load_cursor(self, ctx: Optional[CallContext]) -> None:
        if self._cursor_loaded:
            return
        try:
            self.last_state_sync_at = self.store.get_sync_cursor(self.cursor_key, ctx=ctx)
        except CacheError as exc:
            # An unreadable cursor means a full sync, which rewrites it.
            logger.warning("Ignoring unreadable sync cursor: %s", exc)
            self.last_state_sync_at = None
        self._cursor_loaded = True

    def _advance_cursor(self, started_at: datetime, stage: str, ctx: Optional[CallContext]) -> None:
        cursor = started_at
        if self.last_state_sync_at is not None and self.last_state_sync_at > cursor:
            cursor = self.last_state_sync_at
        self._stage(stage, self.store.set_sync_cursor, cursor, self.cursor_key, ctx=ctx)
        self.last_state_sync_at = cursor

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    def refresh(
        self, page: int, per_page: int, *, ctx: Optional[CallContext] = None
    ) -> list[Entry]:
        """Fetch a page and run a full reconciliation.

        Returns:
            Cached entries, at least ``DEFAULT_CACHE_LIMIT`` of them when
            available.
        """
        entries, _ = self._sync_page(page, per_page, full=True, ctx=ctx)
        return entries

    def load_more(
        self,
        page: int,
        per_page: int,
        entry_filter: Union[EntryFilter, str] = EntryFilter.ALL,
        limit: int = DEFAULT_CACHE_LIMIT,
        *,
        ctx: Optional[CallContext] = None,
    ) -> tuple[list[Entry], int]:
        """Fetch the next page and reconcile incrementally when possible.

        Returns:
            ``(entries, fetched_count)``. ``fetched_count == 0`` means the
            remote has no more pages.
        """
        entry_filter = coerce_filter(entry_filter)
        _, fetched = self._sync_page(page, per_page, full=False, ctx=ctx)
        entries = self.list_cached_by_filter(limit, entry_filter, ctx=ctx)
        return entries, fetched

    def _sync_page(
        self,
        page: int,
        per_page: int,
        *,
        full: bool,
        ctx: Optional[CallContext],
    ) -> tuple[list[Entry], int]:
        self._acquire(ctx)
        try:
            self._load_cursor(ctx)

            entries = self._stage(
                "fetch entries from feedbin", self.client.list_entries, page, per_page, ctx=ctx
            )
            if not entries:
                logger.info("Page %d is empty, nothing more to fetch", page)
                cached = self._stage(
                    "load entries from cache", self.store.list_entries, per_page, ctx=ctx
                )
                return cached, 0

            self._stage("save entries to cache", self.store.save_entries, entries, ctx=ctx)

            if full or self.last_state_sync_at is None:
                self._sync_full_state(ctx)
            else:
                self._sync_incremental(ctx)

            list_limit = per_page
            if full and DEFAULT_CACHE_LIMIT > list_limit:
                list_limit = DEFAULT_CACHE_LIMIT
            cached = self._stage(
                "load entries from cache", self.store.list_entries, list_limit, ctx=ctx
            )
            return cached, len(entries)
        finally:
            self._sync_lock.release()

    def _fetch_full_state(
        self, ctx: Optional[CallContext]
    ) -> tuple[list[Subscription], list[Tagging], list[int], list[int]]:
        """Fetch the four state sets in parallel and join on all of them.

        Each task returns its own result; nothing is shared between
        them. If any task fails, the first failure in submission order
        is raised after every task has finished.
        """
        tasks = (
            ("fetch subscriptions from feedbin", self.client.list_subscriptions),
            ("fetch taggings from feedbin", self.client.list_taggings),
            ("fetch unread entries from feedbin", self.client.list_unread_entry_ids),
            ("fetch starred entries from feedbin", self.client.list_starred_entry_ids),
        )
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="feedsync-sync") as pool:
            futures = [pool.submit(self._stage, stage, call, ctx=ctx) for stage, call in tasks]
        # Leaving the executor block is the join barrier.
        subscriptions, taggings, unread_ids, starred_ids = [f.result() for f in futures]
        return subscriptions, taggings, unread_ids, starred_ids

    def _sync_full_state(self, ctx: Optional[CallContext]) -> None:
        started_at = utcnow()
        subscriptions, taggings, unread_ids, starred_ids = self._fetch_full_state(ctx)

        apply_taggings(subscriptions, taggings)
        self._stage(
            "save subscriptions to cache", self.store.save_subscriptions, subscriptions, ctx=ctx
        )
        self._hydrate_state_entries(unread_ids, starred_ids, ctx)
        self._stage(
            "save entry state to cache",
            self.store.save_entry_states,
            unread_ids,
            starred_ids,
            ctx=ctx,
        )
        self._advance_cursor(started_at, "persist full sync cursor", ctx)
        logger.info(
            "Full sync: %d feeds, %d unread, %d starred",
            len(subscriptions),
            len(unread_ids),
            len(starred_ids),
        )

    def _hydrate_state_entries(
        self, unread_ids: list[int], starred_ids: list[int], ctx: Optional[CallContext]
    ) -> None:
        """Fetch unread/starred entries the cache does not hold yet."""
        wanted = set(unread_ids) | set(starred_ids)
        if not wanted:
            return
        cached = self._stage(
            "check cached unread/starred entries", self.store.existing_entry_ids, wanted, ctx=ctx
        )
        missing = sorted(wanted - cached)
        logger.debug("Hydrating %d of %d unread/starred entries", len(missing), len(wanted))
        if not missing:
            return
        entries = self._stage(
            "fetch unread/starred entries from feedbin",
            self.client.list_entries_by_ids,
            missing,
            ctx=ctx,
        )
        if entries:
            self._stage(
                "save unread/starred entries to cache", self.store.save_entries, entries, ctx=ctx
            )

    def _sync_incremental(self, ctx: Optional[CallContext]) -> None:
        started_at = utcnow()
        updated_ids = self._stage(
            "fetch updated entries from feedbin",
            self.client.list_updated_entry_ids_since,
            self.last_state_sync_at,
            ctx=ctx,
        )
        if updated_ids:
            updated = self._stage(
                "fetch updated entry payloads from feedbin",
                self.client.list_entries_by_ids,
                updated_ids,
                ctx=ctx,
            )
            if updated:
                self._stage(
                    "save updated entries to cache", self.store.save_entries, updated, ctx=ctx
                )

        unread_ids = self._stage(
            "fetch unread entries from feedbin", self.client.list_unread_entry_ids, ctx=ctx
        )
        starred_ids = self._stage(
            "fetch starred entries from feedbin", self.client.list_starred_entry_ids, ctx=ctx
        )
        self._stage(
            "save entry state to cache",
            self.store.save_entry_states,
            unread_ids,
            starred_ids,
            ctx=ctx,
        )
        self._advance_cursor(started_at, "persist incremental sync cursor", ctx)
        logger.info(
            "Incremental sync: %d updated, %d unread, %d starred",
            len(updated_ids),
            len(unread_ids),
            len(starred_ids),
        )

    # ------------------------------------------------------------------
    # Cache reads
    # ------------------------------------------------------------------

    def list_cached(self, limit: int, *, ctx: Optional[CallContext] = None) -> list[Entry]:
        return self.list_cached_by_filter(limit, EntryFilter.ALL, ctx=ctx)

    def list_cached_by_filter(
        self,
        limit: int,
        entry_filter: Union[EntryFilter, str],
        *,
        ctx: Optional[CallContext] = None,
    ) -> list[Entry]:
        entry_filter = coerce_filter(entry_filter)
        return self._stage(
            "load entries from cache",
            self.store.list_entries_by_filter,
            limit,
            entry_filter,
            ctx=ctx,
        )

    def search_cached(
        self,
        limit: int,
        entry_filter: Union[EntryFilter, str],
        query: str,
        *,
        ctx: Optional[CallContext] = None,
    ) -> list[Entry]:
        """Search the cache. An empty query is a plain filtered listing."""
        entry_filter = coerce_filter(entry_filter)
        if not (query or "").strip():
            return self.list_cached_by_filter(limit, entry_filter, ctx=ctx)
        return self._stage(
            "search entries in cache",
            self.store.search_entries_by_filter,
            limit,
            entry_filter,
            query,
            ctx=ctx,
        )

    # ------------------------------------------------------------------
    # Mutations (remote first, cache only on success)
    # ------------------------------------------------------------------

    def toggle_unread(
        self, entry_id: int, current_unread: bool, *, ctx: Optional[CallContext] = None
    ) -> bool:
        """Flip an entry's unread flag remotely, then in the cache.

        Returns:
            The new unread state.
        """
        next_unread = not current_unread
        if next_unread:
            self._stage("mark unread in feedbin", self.client.mark_entries_unread, [entry_id], ctx=ctx)
        else:
            self._stage("mark read in feedbin", self.client.mark_entries_read, [entry_id], ctx=ctx)
        self._stage(
            "save unread state in cache", self.store.set_entry_unread, entry_id, next_unread, ctx=ctx
        )
        return next_unread

    def toggle_starred(
        self, entry_id: int, current_starred: bool, *, ctx: Optional[CallContext] = None
    ) -> bool:
        """Flip an entry's starred flag remotely, then in the cache.

        Returns:
            The new starred state.
        """
        next_starred = not current_starred
        if next_starred:
            self._stage("star entry in feedbin", self.client.star_entries, [entry_id], ctx=ctx)
        else:
            self._stage("unstar entry in feedbin", self.client.unstar_entries, [entry_id], ctx=ctx)
        self._stage(
            "save starred state in cache", self.store.set_entry_starred, entry_id, next_starred, ctx=ctx
        )
        return next_starred

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def load_ui_preferences(self, *, ctx: Optional[CallContext] = None) -> UIPreferences:
        return self._stage("load ui preferences", preferences.load_preferences, self.store, ctx=ctx)

    def save_ui_preferences(
        self, prefs: UIPreferences, *, ctx: Optional[CallContext] = None
    ) -> None:
        self._stage("save ui preferences", preferences.save_preferences, self.store, prefs, ctx=ctx)
