"""Tests for feedsync models and timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feedsync.errors import ValidationError
from feedsync.models import (
    Entry,
    EntryFilter,
    Subscription,
    Tagging,
    UIPreferences,
    coerce_filter,
    format_timestamp,
    parse_timestamp,
)


class TestTimestamps:
    """Tests for the fixed-width timestamp codec."""

    def test_format_is_fixed_width(self) -> None:
        value = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2026-03-01T12:00:00.000000000Z"

    def test_format_converts_to_utc(self) -> None:
        value = datetime(2026, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2026-03-01T12:30:00.000000000Z"

    def test_naive_is_utc(self) -> None:
        assert format_timestamp(datetime(2026, 3, 1)) == "2026-03-01T00:00:00.000000000Z"

    def test_text_order_matches_time_order(self) -> None:
        early = datetime(2026, 3, 1, 12, 0, 0, 900000, tzinfo=timezone.utc)
        late = datetime(2026, 3, 1, 12, 0, 1, tzinfo=timezone.utc)
        assert format_timestamp(early) < format_timestamp(late)

    def test_parse_nanoseconds_truncated(self) -> None:
        parsed = parse_timestamp("2026-03-01T12:00:00.123456789Z")
        assert parsed == datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_parse_offset(self) -> None:
        parsed = parse_timestamp("2026-03-01T14:00:00+02:00")
        assert parsed == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_without_offset_is_utc(self) -> None:
        assert parse_timestamp("2026-03-01 12:00:00").tzinfo == timezone.utc

    def test_parse_short_fraction(self) -> None:
        assert parse_timestamp("2026-03-01T12:00:00.5Z").microsecond == 500000

    @pytest.mark.parametrize("value", ["", "yesterday", "2026-03-01", "2026-13-01T00:00:00Z"])
    def test_parse_rejects(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_timestamp(value)

    def test_round_trip(self) -> None:
        value = datetime(2026, 3, 1, 12, 0, 0, 654321, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(value)) == value


class TestCoerceFilter:
    """Tests for user-facing filter parsing."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, EntryFilter.ALL),
            ("", EntryFilter.ALL),
            ("  ", EntryFilter.ALL),
            ("all", EntryFilter.ALL),
            ("Unread", EntryFilter.UNREAD),
            (" starred ", EntryFilter.STARRED),
            (EntryFilter.STARRED, EntryFilter.STARRED),
        ],
    )
    def test_accepts(self, raw, expected) -> None:
        assert coerce_filter(raw) is expected

    def test_rejects_unknown(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            coerce_filter("archived")
        assert excinfo.value.stage == "validate entry filter"
        assert isinstance(excinfo.value, ValueError)


class TestEntry:
    """Tests for the Entry model."""

    def test_from_remote(self) -> None:
        entry = Entry.from_remote({
            "id": 2077,
            "feed_id": 135,
            "title": "Title",
            "url": "https://example.com/2077",
            "author": None,
            "summary": "Short",
            "content": "<p>Long</p>",
            "published": "2026-03-01T12:00:00.000000Z",
            "created_at": "2026-03-01T12:05:00.000000Z",
        })
        assert entry.id == 2077
        assert entry.feed_id == 135
        assert entry.author == ""
        assert entry.content == "<p>Long</p>"
        assert entry.published_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert entry.is_unread is False

    def test_from_remote_falls_back_to_created_at(self) -> None:
        entry = Entry.from_remote({"id": 1, "created_at": "2026-03-01T12:05:00Z"})
        assert entry.published_at == datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)
        assert entry.title == ""
        assert entry.content is None

    def test_naive_datetime_made_utc(self) -> None:
        entry = Entry(id=1, published_at=datetime(2026, 3, 1, 12, 0))
        assert entry.published_at.tzinfo == timezone.utc

    def test_feed_fields_default_blank(self) -> None:
        entry = Entry(id=1)
        assert entry.feed_title == ""
        assert entry.feed_folder == ""


class TestSubscriptionAndTagging:
    """Tests for subscription and tagging payload mapping."""

    def test_subscription_uses_feed_id(self) -> None:
        sub = Subscription.from_remote({
            "id": 525,
            "feed_id": 47,
            "title": "Daring Fireball",
            "feed_url": "https://daringfireball.net/index.xml",
            "site_url": None,
        })
        assert sub.id == 47
        assert sub.site_url == ""
        assert sub.folder is None

    def test_tagging(self) -> None:
        tagging = Tagging.from_remote({"id": 4, "feed_id": 1, "name": "Tech"})
        assert (tagging.feed_id, tagging.name) == (1, "Tech")

    def test_tagging_null_name(self) -> None:
        assert Tagging.from_remote({"feed_id": 1, "name": None}).name == ""


class TestUIPreferences:
    def test_defaults(self) -> None:
        prefs = UIPreferences()
        assert prefs.relative_time is True
        assert not any([prefs.compact, prefs.mark_read_on_open, prefs.confirm_open_read, prefs.show_numbers])
