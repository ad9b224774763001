"""Shared utilities for all CLI command modules.

Provides the Rich console, the service/store factories and the entry
table renderer used across every command group.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console
from rich.table import Table

from .. import FEEDSYNC_HOME
from ..cache import CacheStore
from ..client import FeedbinClient
from ..config import FeedsyncConfig, load_config
from ..errors import FeedsyncError
from ..models import Entry
from ..sync import SyncService

console = Console()
logger = logging.getLogger("feedsync.cli")

home_option = click.option(
    "--home",
    default=FEEDSYNC_HOME,
    type=click.Path(),
    help="Feedsync home directory.",
)

filter_option = click.option(
    "--filter",
    "entry_filter",
    type=click.Choice(["all", "unread", "starred"]),
    default="all",
    show_default=True,
)


def fail(exc: object) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(1)


@contextmanager
def open_store(home: str) -> Iterator[tuple[FeedsyncConfig, CacheStore]]:
    """Load config and an initialized store for one command."""
    try:
        config = load_config(Path(home))
        store = CacheStore(config.database, search_mode=config.search_mode)
        store.initialize()
    except FeedsyncError as exc:
        fail(exc)
    try:
        yield config, store
    finally:
        store.close()


@contextmanager
def open_service(home: str, remote: bool = True) -> Iterator[SyncService]:
    """Build a SyncService. ``remote=False`` skips the credential check."""
    with open_store(home) as (config, store):
        if remote:
            try:
                config.validate_credentials()
            except FeedsyncError as exc:
                fail(exc)
        client = FeedbinClient(
            config.email,
            config.password,
            base_url=config.api_base_url,
            timeout=config.timeout,
        )
        try:
            yield SyncService(client, store)
        finally:
            client.close()


def entries_table(entries: list[Entry], title: Optional[str] = None) -> Table:
    """Render entries as a compact Rich table."""
    table = Table(title=title, show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("ID", style="dim", justify="right")
    table.add_column("", width=2)
    table.add_column("Published", style="dim")
    table.add_column("Feed", style="cyan")
    table.add_column("Title")

    for entry in entries:
        flags = ("[green]*[/]" if entry.is_unread else " ") + (
            "[yellow]S[/]" if entry.is_starred else " "
        )
        feed = entry.feed_title or str(entry.feed_id)
        if entry.feed_folder:
            feed = f"{entry.feed_folder}/{feed}"
        table.add_row(
            str(entry.id),
            flags,
            entry.published_at.strftime("%Y-%m-%d %H:%M"),
            feed,
            entry.title,
        )
    return table
