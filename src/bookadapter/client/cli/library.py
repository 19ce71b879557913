"""Library commands for the bookadapter CLI.

Commands:
- download: Download books into the library folder
- status: Show the remote library and which books are local
- refresh: Re-scan the library folder
- remove: Permanently delete books
"""

from __future__ import annotations

import sys

import click

from bookadapter.client.cli import config as cli_config
from bookadapter.client.sync import LibrarySyncError


@click.command()
@click.argument("filepaths", nargs=-1, required=True)
@click.option("--timeout", type=float, default=None, help="Max seconds to wait per book.")
def download(filepaths: tuple[str, ...], timeout: float | None) -> None:
    """Download books (<user_id>/<filename>) into the library folder."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            batch = orchestrator.download_many(filepaths, timeout=timeout)
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for filepath, result in batch.succeeded.items():
        click.echo(f"  ↓ {filepath} ({result.size} bytes)")
    for filepath, error in batch.failed.items():
        click.echo(f"  ✗ {filepath}: {error.message}", err=True)
    if batch.failed:
        sys.exit(1)


@click.command()
def status() -> None:
    """Show the remote library and which books have a local copy."""
    config = cli_config.load_config()
    click.echo(f"Library: {cli_config.get_library_root(config)}")
    click.echo(f"Backend: {config.get('backend', 'local')}")

    try:
        with cli_config.open_orchestrator(config) as orchestrator:
            books = orchestrator.list_books()
            local = {b.filepath: orchestrator.is_book_downloaded(b.filepath) for b in books}
            pending_count = len(orchestrator.list_pending())
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Books: {len(books)} ({sum(local.values())} local)")
    for book in sorted(books, key=lambda b: b.filename):
        marker = "●" if local[book.filepath] else "○"
        authors = f" - {book.authors}" if book.authors else ""
        click.echo(f"  {marker} {book.filename}: {book.title}{authors}")
    if pending_count:
        click.echo(f"Pending uploads: {pending_count}")


@click.command()
def refresh() -> None:
    """Re-scan the library folder and forget stale records."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            present = orchestrator.refresh_downloaded()
            removed = orchestrator.collect_orphans()
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"{len(present)} books on disk")
    if removed:
        click.echo(f"Forgot {len(removed)} stale records")


@click.command()
@click.argument("filenames", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def remove(filenames: tuple[str, ...], yes: bool) -> None:
    """Permanently delete books from the backend and the library folder."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            all_books = orchestrator.list_books()
            by_name = {book.filename: book for book in all_books}
            unknown = [name for name in filenames if name not in by_name]
            if unknown:
                click.echo(f"Error: Not in library: {', '.join(unknown)}", err=True)
                sys.exit(1)

            if not yes and not click.confirm(f"Permanently delete {len(filenames)} book(s)?"):
                sys.exit(0)

            result = orchestrator.delete_items_permanently(
                [by_name[name] for name in filenames], all_books
            )
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for name in filenames:
        if name not in result.failed:
            click.echo(f"  Deleted {name}")
    for name, message in result.failed.items():
        click.echo(f"  Failed to delete {name}: {message}", err=True)
    if result.has_failures:
        sys.exit(1)
