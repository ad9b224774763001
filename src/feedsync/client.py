"""
Remote client — the contract the sync engine consumes, and Feedbin v2.

The engine only depends on ``RemoteClient``. ``FeedbinClient`` is the
HTTP implementation against https://api.feedbin.com/v2. Tests swap in
an in-memory fake.

State endpoints (unread, starred) always return complete id sets.
Content endpoints page or filter by id. The engine relies on that
asymmetry, so implementations must not turn the id endpoints into
deltas.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

import requests

from .config import DEFAULT_API_BASE_URL
from .context import CallContext, check_context
from .errors import AuthenticationError, DecodeError, RemoteFetchError
from .models import Entry, Subscription, Tagging, format_timestamp

logger = logging.getLogger("feedsync.client")

T = TypeVar("T")

ENTRIES_BY_ID_BATCH = 100
STATE_MUTATION_BATCH = 1000
MAX_ERROR_BODY = 4096


class RemoteClient(ABC):
    """Read and mutate operations offered by the feed service."""

    @abstractmethod
    def list_entries(
        self, page: int, per_page: int, *, ctx: Optional[CallContext] = None
    ) -> list[Entry]:
        """Fetch one page of entries, newest first."""

    @abstractmethod
    def list_entries_by_ids(
        self, ids: list[int], *, ctx: Optional[CallContext] = None
    ) -> list[Entry]:
        """Fetch full payloads for the given entry ids."""

    @abstractmethod
    def list_subscriptions(self, *, ctx: Optional[CallContext] = None) -> list[Subscription]:
        """Fetch all subscribed feeds."""

    @abstractmethod
    def list_taggings(self, *, ctx: Optional[CallContext] = None) -> list[Tagging]:
        """Fetch all (feed, folder) taggings."""

    @abstractmethod
    def list_unread_entry_ids(self, *, ctx: Optional[CallContext] = None) -> list[int]:
        """Fetch the complete set of unread entry ids."""

    @abstractmethod
    def list_starred_entry_ids(self, *, ctx: Optional[CallContext] = None) -> list[int]:
        """Fetch the complete set of starred entry ids."""

    @abstractmethod
    def list_updated_entry_ids_since(
        self, since: datetime, *, ctx: Optional[CallContext] = None
    ) -> list[int]:
        """Fetch ids of entries whose content changed after ``since``."""

    @abstractmethod
    def mark_entries_read(self, ids: list[int], *, ctx: Optional[CallContext] = None) -> None:
        """Mark entries as read."""

    @abstractmethod
    def mark_entries_unread(self, ids: list[int], *, ctx: Optional[CallContext] = None) -> None:
        """Mark entries as unread."""

    @abstractmethod
    def star_entries(self, ids: list[int], *, ctx: Optional[CallContext] = None) -> None:
        """Star entries."""

    @abstractmethod
    def unstar_entries(self, ids: list[int], *, ctx: Optional[CallContext] = None) -> None:
        """Remove the star from entries."""


def _chunks(ids: list[int], size: int) -> list[list[int]]:
    return [ids[i:i + size] for i in range(0, len(ids), size)]


class FeedbinClient(RemoteClient):
    """Feedbin API v2 over HTTP basic auth.

    Args:
        email: Account email.
        password: Account password.
        base_url: API root without a trailing slash.
        timeout: Default per-request timeout in seconds. A context
            deadline shortens it, never extends it.
        session: Optional pre-built ``requests.Session``.
    """

    def __init__(
        self,
        email: str,
        password: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (email, password)
        self._session.headers.update({"Accept": "application/json"})

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _timeout_for(self, ctx: Optional[CallContext]) -> float:
        if ctx is None:
            return self._timeout
        remaining = ctx.remaining()
        if remaining is None:
            return self._timeout
        return max(0.001, min(self._timeout, remaining))

    def _request(
        self,
        method: str,
        path: str,
        resource: str,
        *,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
        ctx: Optional[CallContext] = None,
    ) -> requests.Response:
        """Send one request and map failures onto feedsync errors.

        Raises:
            SyncCancelledError: If ``ctx`` is already done.
            RemoteFetchError: On transport failure or a non-2xx status.
        """
        check_context(ctx, resource)
        url = f"{self._base_url}{path}"
        headers = {}
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json; charset=utf-8"
            data = json.dumps(body).encode("utf-8")

        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self._timeout_for(ctx),
            )
        except requests.RequestException as exc:
            raise RemoteFetchError(resource, f"request failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, path, resp.status_code)
        if resp.status_code == 401:
            raise AuthenticationError(
                resource, "invalid credentials", status_code=resp.status_code
            )
        if not 200 <= resp.status_code < 300:
            raise RemoteFetchError(
                resource,
                f"failed with status {resp.status_code}: "
                f"{resp.text[:MAX_ERROR_BODY].strip()}",
                status_code=resp.status_code,
            )
        return resp

    def _decode(
        self,
        resp: requests.Response,
        resource: str,
        build: Callable[[Any], T],
    ) -> T:
        try:
            payload = resp.json()
        except ValueError as exc:
            raise DecodeError(f"decode {resource} response", str(exc)) from exc
        try:
            return build(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"decode {resource} response", str(exc)) from exc

    @staticmethod
    def _entries(payload: Any) -> list[Entry]:
        return [Entry.from_remote(item) for item in payload]

    @staticmethod
    def _ids(payload: Any) -> list[int]:
        if not isinstance(payload, list):
            raise TypeError(f"expected a list of ids, got {type(payload).__name__}")
        return [int(item) for item in payload]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def authenticate(self, *, ctx: Optional[CallContext] = None) -> None:
        """Verify the credentials.

        Raises:
            AuthenticationError: When the service answers 401.
        """
        self._request("GET", "/authentication.json", "authenticate", ctx=ctx)

    def list_entries(self, page, per_page, *, ctx=None):
        page = max(page, 1)
        if per_page < 1:
            per_page = 20
        try:
            resp = self._request(
                "GET",
                "/entries.json",
                "list entries",
                params={"page": page, "per_page": per_page},
                ctx=ctx,
            )
        except RemoteFetchError as exc:
            # Feedbin answers 404 once the page is past the end.
            if exc.status_code == 404 and page > 1:
                return []
            raise
        return self._decode(resp, "entries", self._entries)

    def list_entries_by_ids(self, ids, *, ctx=None):
        entries: list[Entry] = []
        for batch in _chunks(list(ids), ENTRIES_BY_ID_BATCH):
            resp = self._request(
                "GET",
                "/entries.json",
                "list entries by id",
                params={"ids": ",".join(str(i) for i in batch)},
                ctx=ctx,
            )
            entries.extend(self._decode(resp, "entries", self._entries))
        return entries

    def list_subscriptions(self, *, ctx=None):
        resp = self._request("GET", "/subscriptions.json", "list subscriptions", ctx=ctx)
        return self._decode(
            resp,
            "subscriptions",
            lambda payload: [Subscription.from_remote(item) for item in payload],
        )

    def list_taggings(self, *, ctx=None):
        resp = self._request("GET", "/taggings.json", "list taggings", ctx=ctx)
        return self._decode(
            resp,
            "taggings",
            lambda payload: [Tagging.from_remote(item) for item in payload],
        )

    def list_unread_entry_ids(self, *, ctx=None):
        resp = self._request("GET", "/unread_entries.json", "list unread entries", ctx=ctx)
        return self._decode(resp, "unread entries", self._ids)

    def list_starred_entry_ids(self, *, ctx=None):
        resp = self._request("GET", "/starred_entries.json", "list starred entries", ctx=ctx)
        return self._decode(resp, "starred entries", self._ids)

    def list_updated_entry_ids_since(self, since, *, ctx=None):
        resp = self._request(
            "GET",
            "/updated_entries.json",
            "list updated entries",
            params={"since": format_timestamp(since)},
            ctx=ctx,
        )
        return self._decode(resp, "updated entries", self._ids)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _mutate(
        self,
        method: str,
        path: str,
        key: str,
        resource: str,
        ids: list[int],
        ctx: Optional[CallContext],
    ) -> None:
        for batch in _chunks(list(ids), STATE_MUTATION_BATCH):
            self._request(method, path, resource, body={key: batch}, ctx=ctx)

    def mark_entries_read(self, ids, *, ctx=None):
        self._mutate("DELETE", "/unread_entries.json", "unread_entries", "mark entries read", ids, ctx)

    def mark_entries_unread(self, ids, *, ctx=None):
        self._mutate("POST", "/unread_entries.json", "unread_entries", "mark entries unread", ids, ctx)

    def star_entries(self, ids, *, ctx=None):
        self._mutate("POST", "/starred_entries.json", "starred_entries", "star entries", ids, ctx)

    def unstar_entries(self, ids, *, ctx=None):
        self._mutate("DELETE", "/starred_entries.json", "starred_entries", "unstar entries", ids, ctx)
