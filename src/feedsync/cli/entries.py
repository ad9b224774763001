"""Entry commands: list, search, toggle-read, toggle-star."""

from __future__ import annotations

import click

from ._common import (
    console,
    entries_table,
    fail,
    filter_option,
    home_option,
    open_service,
    open_store,
)
from ..errors import FeedsyncError


def _toggle(home: str, entry_id: int, flag: str) -> None:
    with open_service(home) as service:
        entry = service.store.get_entry(entry_id)
        if entry is None:
            fail(f"entry {entry_id} is not cached; run feedsync refresh first")
        try:
            if flag == "unread":
                now = service.toggle_unread(entry_id, entry.is_unread)
                label = "unread" if now else "read"
            else:
                now = service.toggle_starred(entry_id, entry.is_starred)
                label = "starred" if now else "unstarred"
        except FeedsyncError as exc:
            fail(exc)
        console.print(f"\n  [green]Entry {entry_id}[/] is now [bold]{label}[/]\n")


def register_entry_commands(main: click.Group) -> None:
    """Register cache read and toggle commands."""

    @main.command("list")
    @home_option
    @filter_option
    @click.option("--limit", "-n", default=50, show_default=True)
    def list_entries(home, entry_filter, limit):
        """List cached entries without touching the network."""
        with open_store(home) as (_config, store):
            try:
                entries = store.list_entries_by_filter(limit, entry_filter)
            except FeedsyncError as exc:
                fail(exc)
        if not entries:
            console.print("\n  [dim]Cache is empty.[/]\n")
            return
        console.print(entries_table(entries, title=f"{entry_filter} entries"))

    @main.command("search")
    @home_option
    @click.argument("query")
    @filter_option
    @click.option("--limit", "-n", default=50, show_default=True)
    def search(home, query, entry_filter, limit):
        """Search cached entries."""
        with open_service(home, remote=False) as service:
            try:
                entries = service.search_cached(limit, entry_filter, query)
            except FeedsyncError as exc:
                fail(exc)
            mode = service.store.search_mode.value
        if not entries:
            console.print(f"\n  [dim]No matches for[/] {query!r}\n")
            return
        console.print(entries_table(entries, title=f"{len(entries)} match(es) [{mode}]"))

    @main.command("toggle-read")
    @home_option
    @click.argument("entry_id", type=int)
    def toggle_read(home, entry_id):
        """Flip an entry between read and unread."""
        _toggle(home, entry_id, "unread")

    @main.command("toggle-star")
    @home_option
    @click.argument("entry_id", type=int)
    def toggle_star(home, entry_id):
        """Star or unstar an entry."""
        _toggle(home, entry_id, "starred")

