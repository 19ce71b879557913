"""Configuration command for the bookadapter CLI.

Commands:
- configure: Set the library folder and remote backend
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from bookadapter.client.cli import config as cli_config


@click.command()
@click.option(
    "--library-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Folder holding downloaded books (default: ~/Books).",
)
@click.option(
    "--backend",
    type=click.Choice(["local", "http"]),
    default=None,
    help="Remote backend type.",
)
@click.option("--server", default=None, help="Server URL for the http backend.")
@click.option("--token", default=None, help="Access token for the http backend.")
@click.option("--user-id", default=None, help="Signed-in user for the local backend.")
@click.option(
    "--blob-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Storage folder for the local backend.",
)
def configure(
    library_root: Path | None,
    backend: str | None,
    server: str | None,
    token: str | None,
    user_id: str | None,
    blob_root: Path | None,
) -> None:
    """Set the library folder and the remote backend.

    Only the given options change; the rest of the saved
    configuration is kept.
    """
    config = cli_config.load_config()

    if library_root is not None:
        config["library_root"] = str(library_root.expanduser().resolve())
    if backend is not None:
        config["backend"] = backend
    if server is not None:
        config["server_url"] = server.rstrip("/")
    if token is not None:
        config["token"] = token
    if user_id is not None:
        config["user_id"] = user_id
    if blob_root is not None:
        config["blob_root"] = str(blob_root.expanduser().resolve())

    backend_type = config.get("backend", "local")
    if backend_type == "http" and not (config.get("server_url") and config.get("token")):
        click.echo("Error: The http backend needs --server and --token.", err=True)
        sys.exit(1)
    if backend_type == "local" and not config.get("blob_root"):
        click.echo("Error: The local backend needs --blob-root.", err=True)
        sys.exit(1)

    config["backend"] = backend_type
    cli_config.save_config(config)

    click.echo(f"Configuration saved to {cli_config.get_config_file()}")
    click.echo(f"Library: {cli_config.get_library_root(config)}")
    click.echo(f"Backend: {backend_type}")
