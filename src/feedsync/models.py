"""
Pydantic models for cached feed content and local state.

Entries and subscriptions mirror the subset of the Feedbin v2 payloads
we keep. ``feed_title`` and ``feed_folder`` on an entry are filled in
by cache reads; they are never written to the entries table.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})"
    r"(?:\.(\d{1,9}))?"
    r"(Z|[+-]\d{2}:?\d{2})?$"
)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Encode a datetime as fixed-width RFC3339 UTC with nine fraction digits.

    Fixed width keeps the text column sortable, which the
    ``published_at DESC`` indexes rely on.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f") + "000Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 timestamp with up to nanosecond precision.

    Fractions beyond microseconds are truncated. A missing offset is
    read as UTC.

    Raises:
        ValueError: If the text is not an RFC3339 timestamp.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid RFC3339 timestamp: {value!r}")
    date_part, time_part, fraction, offset = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = offset or "Z"
    if offset == "Z":
        offset = "+00:00"
    elif ":" not in offset:
        offset = offset[:3] + ":" + offset[3:]
    parsed = datetime.fromisoformat(f"{date_part}T{time_part}.{micros}{offset}")
    return parsed.astimezone(timezone.utc)


class EntryFilter(str, Enum):
    """Which slice of the cache a listing covers."""

    ALL = "all"
    UNREAD = "unread"
    STARRED = "starred"


class SearchMode(str, Enum):
    """Text-search backend used by the cache store."""

    LIKE = "like"
    FTS = "fts"


def coerce_filter(value: Union[EntryFilter, str, None]) -> EntryFilter:
    """Turn user input into an EntryFilter.

    ``None`` and blank strings mean ``all``.

    Raises:
        ValidationError: For anything that is not all/unread/starred.
    """
    if isinstance(value, EntryFilter):
        return value
    if value is None or not str(value).strip():
        return EntryFilter.ALL
    try:
        return EntryFilter(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            "validate entry filter",
            f"unknown filter {value!r} (expected all, unread or starred)",
        ) from None


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


def _coerce_datetime(value: Any) -> Any:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Entry(BaseModel):
    """A single feed item, as fetched or as cached."""

    id: int
    title: str = ""
    url: str = ""
    author: str = ""
    summary: str = ""
    content: Optional[str] = None
    feed_id: int = 0
    published_at: datetime = Field(default_factory=utcnow)
    fetched_at: Optional[datetime] = None
    is_unread: bool = False
    is_starred: bool = False

    # Joined from feeds at read time.
    feed_title: str = ""
    feed_folder: str = ""

    @field_validator("title", "url", "author", "summary", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("published_at", "fetched_at", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return _coerce_datetime(value)

    @classmethod
    def from_remote(cls, payload: dict[str, Any]) -> "Entry":
        """Build an entry from a Feedbin ``/entries.json`` item."""
        return cls(
            id=payload["id"],
            title=payload.get("title"),
            url=payload.get("url"),
            author=payload.get("author"),
            summary=payload.get("summary"),
            content=payload.get("content"),
            feed_id=payload.get("feed_id") or 0,
            published_at=payload.get("published") or payload.get("created_at") or utcnow(),
        )


class Subscription(BaseModel):
    """A subscribed feed. ``id`` is the feed id, not the subscription id."""

    id: int
    title: str = ""
    feed_url: str = ""
    site_url: str = ""
    folder: Optional[str] = None

    @field_validator("title", "feed_url", "site_url", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @classmethod
    def from_remote(cls, payload: dict[str, Any]) -> "Subscription":
        """Build a subscription from a Feedbin ``/subscriptions.json`` item."""
        return cls(
            id=payload["feed_id"],
            title=payload.get("title"),
            feed_url=payload.get("feed_url"),
            site_url=payload.get("site_url"),
        )


class Tagging(BaseModel):
    """A (feed, folder name) pair. Only used to derive Subscription.folder."""

    feed_id: int
    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @classmethod
    def from_remote(cls, payload: dict[str, Any]) -> "Tagging":
        return cls(feed_id=payload["feed_id"], name=payload.get("name"))


class UIPreferences(BaseModel):
    """Display preferences persisted in app_state for the UI layer."""

    compact: bool = False
    mark_read_on_open: bool = False
    confirm_open_read: bool = False
    relative_time: bool = True
    show_numbers: bool = False


class CacheStats(BaseModel):
    """Snapshot of what the cache currently holds."""

    entries: int = 0
    unread: int = 0
    starred: int = 0
    feeds: int = 0
    last_sync: Optional[datetime] = None
    search_mode: SearchMode = SearchMode.LIKE
    path: str = ""
