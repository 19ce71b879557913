"""Upload commands for the bookadapter CLI.

Commands:
- add: Upload books to the library
- resume: Finish interrupted uploads
- pending: List uploads that have not completed
- cancel: Drop a pending upload
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from bookadapter.client.cli import config as cli_config
from bookadapter.client.sync import BatchResult, LibrarySyncError, UploadResult


def _echo_upload(result: UploadResult) -> None:
    click.echo(f"  ↑ {result.filepath}")
    if result.cover_error:
        click.echo(f"    (no cover: {result.cover_error})")


def _echo_batch(batch: BatchResult) -> None:
    for result in batch.succeeded.values():
        _echo_upload(result)
    for filepath, error in batch.failed.items():
        click.echo(f"  ✗ {filepath}: {error.message}", err=True)


@click.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def add(files: tuple[Path, ...]) -> None:
    """Upload books to the library.

    Each file is copied into the library folder, then its metadata,
    cover and contents are sent to the backend. An interrupted upload
    can be finished later with 'bookadapter resume'.
    """
    failed = 0
    try:
        with cli_config.open_orchestrator() as orchestrator:
            for path in files:
                try:
                    result = orchestrator.upload(path)
                except LibrarySyncError as e:
                    click.echo(f"  ✗ {path.name}: {e.message}", err=True)
                    failed += 1
                    continue
                _echo_upload(result)
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if failed:
        sys.exit(1)


@click.command()
def resume() -> None:
    """Finish every interrupted upload."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            batch = orchestrator.resume_pending()
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not batch.succeeded and not batch.failed:
        click.echo("Nothing to resume.")
        return
    _echo_batch(batch)
    if batch.failed:
        sys.exit(1)


@click.command()
def pending() -> None:
    """List uploads that have not completed."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            entries = orchestrator.list_pending()
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not entries:
        click.echo("No pending uploads.")
        return
    for entry in entries:
        metadata = "metadata ✓" if entry.is_document_uploaded else "metadata ·"
        contents = "file ✓" if entry.is_file_uploaded else "file ·"
        click.echo(f"  {entry.filepath}  [{metadata}, {contents}]")


@click.command()
@click.argument("filepath")
def cancel(filepath: str) -> None:
    """Drop the pending upload of FILEPATH (<user_id>/<filename>)."""
    try:
        with cli_config.open_orchestrator() as orchestrator:
            dropped = orchestrator.cancel_upload(filepath)
    except (LibrarySyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not dropped:
        click.echo(f"Error: No pending upload for {filepath}", err=True)
        sys.exit(1)
    click.echo(f"Cancelled upload of {filepath}")
