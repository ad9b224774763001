"""Tests for UI preference persistence."""

from __future__ import annotations

import pytest

from feedsync.cache import CacheStore
from feedsync.errors import CacheReadError
from feedsync.models import UIPreferences
from feedsync.preferences import PREFERENCE_KEYS, load_preferences, parse_bool, save_preferences


class TestParseBool:
    @pytest.mark.parametrize("raw", ["1", "t", "T", "true", "TRUE", " True "])
    def test_true(self, raw: str) -> None:
        assert parse_bool(raw) is True

    @pytest.mark.parametrize("raw", ["0", "f", "F", "false", "False"])
    def test_false(self, raw: str) -> None:
        assert parse_bool(raw) is False

    @pytest.mark.parametrize("raw", ["", "yes", "2", "off"])
    def test_rejects(self, raw: str) -> None:
        with pytest.raises(ValueError):
            parse_bool(raw)


class TestPreferences:
    """Tests for loading and saving through app_state."""

    def test_unset_uses_defaults(self, store: CacheStore) -> None:
        assert load_preferences(store) == UIPreferences()

    def test_round_trip(self, store: CacheStore) -> None:
        prefs = UIPreferences(compact=True, show_numbers=True, relative_time=False)
        save_preferences(store, prefs)
        assert load_preferences(store) == prefs

    def test_stored_as_text_flags(self, store: CacheStore) -> None:
        save_preferences(store, UIPreferences(compact=True))
        assert store.get_app_state("ui_pref_compact") == "true"
        assert store.get_app_state("ui_pref_relative_time") == "true"
        assert store.get_app_state("ui_pref_show_numbers") == "false"
        assert set(PREFERENCE_KEYS.values()) == {
            "ui_pref_compact",
            "ui_pref_mark_read_on_open",
            "ui_pref_confirm_open_read",
            "ui_pref_relative_time",
            "ui_pref_show_numbers",
        }

    def test_legacy_values_accepted(self, store: CacheStore) -> None:
        store.set_app_state("ui_pref_mark_read_on_open", "1")
        store.set_app_state("ui_pref_relative_time", "f")
        prefs = load_preferences(store)
        assert prefs.mark_read_on_open is True
        assert prefs.relative_time is False

    def test_malformed_value(self, store: CacheStore) -> None:
        store.set_app_state("ui_pref_compact", "maybe")
        with pytest.raises(CacheReadError, match="ui_pref_compact"):
            load_preferences(store)
