"""Status and preference commands: status, prefs show, prefs set."""

from __future__ import annotations

import click
from rich.panel import Panel
from rich.table import Table

from ._common import console, fail, home_option, open_store
from ..errors import FeedsyncError
from ..models import UIPreferences
from ..preferences import PREFERENCE_KEYS, load_preferences, parse_bool, save_preferences


def register_status_commands(main: click.Group) -> None:
    """Register status and preference commands on the main CLI group."""

    @main.command()
    @home_option
    def status(home):
        """Show what the cache holds and when it last synced."""
        with open_store(home) as (config, store):
            try:
                store.check_writable()
                stats = store.stats()
            except FeedsyncError as exc:
                fail(exc)

        last_sync = stats.last_sync.isoformat() if stats.last_sync else "[dim]never[/]"
        mode = stats.search_mode.value
        if mode != config.search_mode.value:
            mode += f" [yellow](requested {config.search_mode.value})[/]"
        console.print()
        console.print(
            Panel(
                f"Database: [cyan]{stats.path}[/]\n"
                f"Entries: [bold]{stats.entries}[/] "
                f"([green]{stats.unread} unread[/], [yellow]{stats.starred} starred[/])\n"
                f"Feeds: [bold]{stats.feeds}[/]\n"
                f"Search: {mode}\n"
                f"Last sync: {last_sync}\n"
                f"Account: {config.email or '[yellow]not configured[/]'}",
                title="Feedsync",
                border_style="bright_blue",
            )
        )
        console.print()

    @main.group()
    def prefs():
        """Display preferences stored in the cache."""

    @prefs.command("show")
    @home_option
    def prefs_show(home):
        """Print every preference flag."""
        with open_store(home) as (_config, store):
            try:
                current = load_preferences(store)
            except FeedsyncError as exc:
                fail(exc)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Preference", style="bold")
        table.add_column("Value")
        for name, value in current.model_dump().items():
            table.add_row(name.replace("_", "-"), "[green]on[/]" if value else "[dim]off[/]")
        console.print(table)

    @prefs.command("set")
    @home_option
    @click.argument("name", type=click.Choice([n.replace("_", "-") for n in PREFERENCE_KEYS]))
    @click.argument("value")
    def prefs_set(home, name, value):
        """Set a preference flag (true/false)."""
        try:
            flag = parse_bool(value)
        except ValueError as exc:
            fail(exc)
        with open_store(home) as (_config, store):
            try:
                current = load_preferences(store)
                updated = UIPreferences(**{**current.model_dump(), name.replace("-", "_"): flag})
                save_preferences(store, updated)
            except FeedsyncError as exc:
                fail(exc)
        console.print(f"  [green]{name}[/] = {flag}")
