"""Command-line interface for bookadapter.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the library folder and remote backend
- add: Upload books to the library
- resume: Finish interrupted uploads
- pending: List uploads that have not completed
- cancel: Drop a pending upload
- download: Download books into the library folder
- status: Show the remote library and which books are local
- refresh: Re-scan the library folder
- remove: Permanently delete books
"""

from __future__ import annotations

import logging

import click

from bookadapter.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_library_root,
    load_config,
    open_orchestrator,
    save_config,
)
from bookadapter.client.cli.configure import configure
from bookadapter.client.cli.library import download, refresh, remove, status
from bookadapter.client.cli.upload import add, cancel, pending, resume


@click.group()
@click.version_option(package_name="bookadapter")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """bookadapter - E-book library sync."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup
cli.add_command(configure)

# Upload commands
cli.add_command(add)
cli.add_command(resume)
cli.add_command(pending)
cli.add_command(cancel)

# Library commands
cli.add_command(download)
cli.add_command(status)
cli.add_command(refresh)
cli.add_command(remove)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_library_root",
    "load_config",
    "open_orchestrator",
    "save_config",
]
