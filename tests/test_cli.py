"""Tests for the feedsync CLI (CliRunner, remote faked)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakeClient, make_entry

from feedsync import __version__
from feedsync.cache import CacheStore
from feedsync.cli import main
from feedsync.errors import RemoteFetchError
from feedsync.models import Subscription


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "FEEDBIN_EMAIL",
        "FEEDBIN_PASSWORD",
        "FEEDBIN_API_BASE_URL",
        "FEEDBIN_DB_PATH",
        "FEEDBIN_SEARCH_MODE",
        "FEEDBIN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEEDBIN_EMAIL", "me@example.com")
    monkeypatch.setenv("FEEDBIN_PASSWORD", "secret")


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "home"


@pytest.fixture
def seeded_home(home: Path) -> Path:
    """A home whose cache already holds two entries."""
    with CacheStore(home / "feedsync.db") as store:
        store.initialize()
        store.save_subscriptions([Subscription(id=10, title="Feed A", folder="Formula 1")])
        store.save_entries([
            make_entry(1, minutes=1, title="Monza preview"),
            make_entry(2, minutes=2, title="Release notes"),
        ])
        store.save_entry_states([1], [])
    return home


@pytest.fixture
def fake_remote(client: FakeClient):
    with patch("feedsync.cli._common.FeedbinClient", return_value=client) as factory:
        yield factory


def run(*args: str):
    return CliRunner().invoke(main, list(args))


class TestMain:
    def test_version(self) -> None:
        result = run("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self) -> None:
        result = run("--help")
        for name in ("refresh", "more", "list", "search", "toggle-read", "toggle-star", "status", "prefs"):
            assert name in result.output


class TestList:
    """Tests for the offline list command."""

    def test_empty_cache(self, home: Path) -> None:
        result = run("list", "--home", str(home))
        assert result.exit_code == 0
        assert "Cache is empty" in result.output

    def test_lists_entries(self, seeded_home: Path) -> None:
        result = run("list", "--home", str(seeded_home))
        assert result.exit_code == 0
        assert "Monza preview" in result.output
        assert "Release notes" in result.output

    def test_filter(self, seeded_home: Path) -> None:
        result = run("list", "--home", str(seeded_home), "--filter", "unread")
        assert result.exit_code == 0
        assert "Monza preview" in result.output
        assert "Release notes" not in result.output

    def test_bad_filter_rejected_by_click(self, seeded_home: Path) -> None:
        result = run("list", "--home", str(seeded_home), "--filter", "archived")
        assert result.exit_code == 2


class TestSearch:
    """Tests for the offline search command."""

    def test_match(self, seeded_home: Path) -> None:
        result = run("search", "monza", "--home", str(seeded_home))
        assert result.exit_code == 0
        assert "Monza preview" in result.output
        assert "Release notes" not in result.output

    def test_matches_folder(self, seeded_home: Path) -> None:
        result = run("search", "formula", "--home", str(seeded_home))
        assert "Monza preview" in result.output
        assert "Release notes" in result.output

    def test_no_match(self, seeded_home: Path) -> None:
        result = run("search", "nothing-like-this", "--home", str(seeded_home))
        assert result.exit_code == 0
        assert "No matches" in result.output

    def test_works_without_credentials(self, seeded_home: Path) -> None:
        assert run("search", "notes", "--home", str(seeded_home)).exit_code == 0


class TestStatus:
    def test_status(self, seeded_home: Path) -> None:
        result = run("status", "--home", str(seeded_home))
        assert result.exit_code == 0
        assert "Feedsync" in result.output
        assert "1 unread" in result.output
        assert "never" in result.output
        assert "not configured" in result.output


class TestPrefs:
    """Tests for preference commands."""

    def test_show_defaults(self, home: Path) -> None:
        result = run("prefs", "show", "--home", str(home))
        assert result.exit_code == 0
        assert "relative-time" in result.output
        assert "mark-read-on-open" in result.output

    def test_set_persists(self, home: Path) -> None:
        result = run("prefs", "set", "--home", str(home), "compact", "true")
        assert result.exit_code == 0
        with CacheStore(home / "feedsync.db") as store:
            assert store.get_app_state("ui_pref_compact") == "true"

    def test_set_rejects_value(self, home: Path) -> None:
        result = run("prefs", "set", "--home", str(home), "compact", "maybe")
        assert result.exit_code == 1
        assert "invalid boolean" in result.output

    def test_set_rejects_name(self, home: Path) -> None:
        assert run("prefs", "set", "--home", str(home), "dark-mode", "true").exit_code == 2


class TestSyncCommands:
    """Tests for refresh and more with the remote faked out."""

    def test_refresh_requires_credentials(self, home: Path) -> None:
        result = run("refresh", "--home", str(home))
        assert result.exit_code == 1
        assert "FEEDBIN_EMAIL" in result.output

    def test_refresh(self, home: Path, credentials, fake_remote, client: FakeClient) -> None:
        client.unread_ids = [2]

        result = run("refresh", "--home", str(home))

        assert result.exit_code == 0, result.output
        assert "done" in result.output
        fake_remote.assert_called_once()
        assert fake_remote.call_args.args == ("me@example.com", "secret")
        with CacheStore(home / "feedsync.db") as store:
            assert [e.id for e in store.list_entries_by_filter(10, "unread")] == [2]
            assert store.get_sync_cursor() is not None

    def test_refresh_failure(self, home: Path, credentials, fake_remote, client: FakeClient) -> None:
        client.errors["list_taggings"] = RemoteFetchError("list taggings", "status 500")
        result = run("refresh", "--home", str(home))
        assert result.exit_code == 1
        assert "fetch taggings from feedbin" in result.output

    def test_more_past_end(self, home: Path, credentials, fake_remote) -> None:
        result = run("more", "--home", str(home), "--page", "7")
        assert result.exit_code == 0
        assert "No more entries" in result.output

    def test_more_fetches_page(self, home: Path, credentials, fake_remote, client: FakeClient) -> None:
        client.pages[2] = [make_entry(3, title="Page two")]
        result = run("more", "--home", str(home), "--page", "2")
        assert result.exit_code == 0, result.output
        assert "1 entries fetched" in result.output
        assert "Page two" in result.output


class TestToggleCommands:
    """Tests for toggle-read and toggle-star."""

    def test_toggle_read(self, seeded_home: Path, credentials, fake_remote, client: FakeClient) -> None:
        result = run("toggle-read", "1", "--home", str(seeded_home))
        assert result.exit_code == 0, result.output
        assert "now read" in result.output
        assert client.called("mark_entries_read") == [("mark_entries_read", [1])]

    def test_toggle_star(self, seeded_home: Path, credentials, fake_remote, client: FakeClient) -> None:
        result = run("toggle-star", "2", "--home", str(seeded_home))
        assert result.exit_code == 0, result.output
        assert "now starred" in result.output
        with CacheStore(seeded_home / "feedsync.db") as store:
            assert store.get_entry(2).is_starred is True

    def test_uncached_entry(self, seeded_home: Path, credentials, fake_remote, client: FakeClient) -> None:
        result = run("toggle-read", "99", "--home", str(seeded_home))
        assert result.exit_code == 1
        assert "not cached" in result.output
        assert client.calls == []

    def test_remote_failure(self, seeded_home: Path, credentials, fake_remote, client: FakeClient) -> None:
        client.errors["mark_entries_read"] = RemoteFetchError("mark entries read", "offline")
        result = run("toggle-read", "1", "--home", str(seeded_home))
        assert result.exit_code == 1
        with CacheStore(seeded_home / "feedsync.db") as store:
            assert store.get_entry(1).is_unread is True
