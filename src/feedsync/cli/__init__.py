"""
Feedsync CLI — read your feeds from the local cache.

The main Click group is defined here and all subcommands are
registered via register functions from their own modules.

Entry point: feedsync.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="feedsync")
@click.option("-v", "--verbose", count=True, help="More logging (-v info, -vv debug).")
def main(verbose: int):
    """Feedsync — local-first Feedbin cache.

    Refresh when you want. Read instantly, always.
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .sync_cmd import register_sync_commands
from .entries import register_entry_commands
from .status import register_status_commands

register_sync_commands(main)
register_entry_commands(main)
register_status_commands(main)
