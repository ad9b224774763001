"""Sync commands: refresh, more."""

from __future__ import annotations

import click

from ._common import (
    console,
    entries_table,
    fail,
    filter_option,
    home_option,
    logger,
    open_service,
)
from ..context import CallContext
from ..errors import FeedsyncError


def register_sync_commands(main: click.Group) -> None:
    """Register the refresh and more commands."""

    @main.command("refresh")
    @home_option
    @click.option("--per-page", default=20, show_default=True, type=int)
    @click.option("--limit", default=20, show_default=True, help="Entries to show.")
    @click.option("--timeout", default=None, type=float, help="Give up after N seconds.")
    def refresh(home, per_page, limit, timeout):
        """Fetch the newest page and fully reconcile the cache."""
        ctx = CallContext.with_timeout(timeout) if timeout else None
        with open_service(home) as service:
            console.print("\n  Syncing with Feedbin...", end=" ")
            try:
                entries = service.refresh(1, per_page, ctx=ctx)
            except FeedsyncError as exc:
                console.print("[red]failed[/]")
                logger.debug("Refresh failed", exc_info=True)
                fail(exc)
            console.print(f"[green]done[/] [dim]({len(entries)} cached)[/]")
            console.print(entries_table(entries[:limit]))
            console.print()

    @main.command("more")
    @home_option
    @click.option("--page", required=True, type=int, help="Page number to fetch.")
    @click.option("--per-page", default=20, show_default=True, type=int)
    @filter_option
    @click.option("--limit", default=50, show_default=True, help="Entries to show.")
    def more(home, page, per_page, entry_filter, limit):
        """Fetch another page and reconcile incrementally."""
        with open_service(home) as service:
            try:
                entries, fetched = service.load_more(page, per_page, entry_filter, limit)
            except FeedsyncError as exc:
                fail(exc)
            if fetched == 0:
                console.print("\n  [yellow]No more entries on the server.[/]")
            else:
                console.print(f"\n  [green]{fetched} entries fetched[/]")
            console.print(entries_table(entries))
            console.print()
