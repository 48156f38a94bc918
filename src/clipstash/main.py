"""Launcher for the clipstash daemon.

This module starts the clipboard history service: it parses options with
click, configures logging, loads settings and runs the App until SIGINT or
SIGTERM. History itself is browsed through a UI layer, not this command.

Usage:
    clipstash [--config PATH] [--backend auto|x11|polling] [--verbose]
"""

import sys
from pathlib import Path

import click

from clipstash.main_logging import configure_logging


@click.command()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="TOML settings file (default: user config directory)",
)
@click.option(
    "--backend",
    type=click.Choice(["auto", "x11", "polling"]),
    default=None,
    help="Override the configured clipboard backend",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable DEBUG-level logging",
)
def main(config_file: Path | None, backend: str | None, verbose: bool) -> None:
    """Record clipboard history in the background."""
    configure_logging(verbose)

    _run(config_file, backend)


def _run(config_file: Path | None, backend: str | None) -> None:
    """Load settings and run the service, mapping startup failures to exit 1.

    Args:
        config_file: Optional TOML settings file.
        backend: Optional backend override.
    """
    import asyncio

    from clipstash.app import App
    from clipstash.config import ConfigStore, load_settings
    from clipstash.errors import BackendUnavailableError, StorageError

    overrides = {"backend": backend} if backend else {}
    try:
        settings = load_settings(config_file, **overrides)
    except (OSError, ValueError) as e:
        click.echo(f"Error: invalid configuration: {e}", err=True)
        sys.exit(1)

    try:
        asyncio.run(App(ConfigStore(config_file, settings)).run())
    except (BackendUnavailableError, StorageError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
