"""Command-line interface for cardsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- check: List the card and show what would be copied
- copy: Check the card and copy new files
- watch: Check and copy on an interval until interrupted
"""

from __future__ import annotations

import click

from cardsync.client.cli.run import check, configure_logging, copy, watch


@click.group()
@click.version_option(package_name="cardsync")
def cli() -> None:
    """cardsync - Copy photos from a Wi-Fi SD card."""


cli.add_command(check)
cli.add_command(copy)
cli.add_command(watch)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "configure_logging",
    "main",
]
