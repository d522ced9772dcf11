"""Check, copy and watch commands for the cardsync CLI.

Commands:
- check: List the card and show what would be copied
- copy: Check the card and copy new files
- watch: Check and copy on an interval until interrupted
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any

import click

from cardsync.client.api import CardClient
from cardsync.client.catalog import CatalogProgress
from cardsync.client.errors import CardSyncError
from cardsync.client.network import NetworkChecker
from cardsync.client.sync import SyncOrchestrator
from cardsync.client.transfer import ProgressInfo
from cardsync.core.config import (
    DEFAULT_REMOTE_ROOT,
    CardConfig,
    TargetPeriod,
    default_local_folder,
)

Runner = Callable[[SyncOrchestrator], Awaitable[bool]]


def configure_logging(verbose: bool) -> None:
    """Send cardsync log records to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    cardsync_logger = logging.getLogger("cardsync")
    cardsync_logger.handlers = [handler]
    cardsync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    cardsync_logger.propagate = False


def card_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command, mapped onto CardConfig."""

    @click.option("--root", "remote_root", default=DEFAULT_REMOTE_ROOT, show_default=True,
                  help="Base URL of the card.")
    @click.option("--folder", "local_folder", type=click.Path(file_okay=False, path_type=Path),
                  default=default_local_folder, help="Local folder for copied files.")
    @click.option("--period", type=click.Choice([p.value for p in TargetPeriod]), default="all",
                  show_default=True, help="Which files to copy by date.")
    @click.option("--date", "dates", type=click.DateTime(formats=["%Y-%m-%d"]), multiple=True,
                  help="Date to copy with --period select (repeatable).")
    @click.option("--delete-on-copy", is_flag=True, help="Delete files on the card once copied.")
    @click.option("--recycle", is_flag=True,
                  help="Move local copies of files deleted on the card to the recycle folder.")
    @click.option("--keep-extension-case", is_flag=True, help="Do not lower-case file extensions.")
    @click.option("--interval", type=float, default=30.0, show_default=True,
                  help="Seconds between auto checks.")
    @click.option("--timeout", type=float, default=10.0, show_default=True,
                  help="Seconds to wait for the card.")
    @click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
    @wraps(func)
    def wrapper(
        remote_root: str,
        local_folder: Path,
        period: str,
        dates: tuple[datetime, ...],
        delete_on_copy: bool,
        recycle: bool,
        keep_extension_case: bool,
        interval: float,
        timeout: float,
        verbose: bool,
        **kwargs: Any,
    ) -> Any:
        configure_logging(verbose)
        try:
            config = CardConfig(
                remote_root=remote_root,
                local_folder=local_folder,
                target_period=TargetPeriod(period),
                target_dates=frozenset(d.date() for d in dates),
                delete_on_copy=delete_on_copy,
                moves_file_to_recycle=recycle,
                makes_extension_lowercase=not keep_extension_case,
                auto_check_interval=interval,
                timeout=timeout,
            )
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        return func(config, **kwargs)

    return wrapper


def _print_progress(info: ProgressInfo, overall: CatalogProgress) -> None:
    remaining = int(overall.remaining.total_seconds())
    sys.stdout.write(
        f"\r  {info.current}/{info.total} bytes ({info.percentage:.0f}%),"
        f" {overall.copied_all:.0f}% overall, {remaining}s left"
    )
    if info.current >= info.total:
        sys.stdout.write("\n")
    sys.stdout.flush()


def _print_catalog(orchestrator: SyncOrchestrator) -> None:
    for entry in orchestrator.catalog:
        marker = "*" if entry.is_target else " "
        click.echo(f"{marker} {entry.status.value:<12} {entry.size:>10}  {entry.path}")


def _run(config: CardConfig, runner: Runner, show_progress: bool = False) -> bool:
    async def main() -> bool:
        checker = NetworkChecker(config.remote_host, config.remote_port)
        async with CardClient(config, checker) as client:
            def on_progress(info: ProgressInfo) -> None:
                _print_progress(info, orchestrator.catalog_progress())

            orchestrator = SyncOrchestrator(
                config,
                client,
                checker=checker,
                on_status=click.echo,
                on_progress=on_progress if show_progress else None,
            )
            return await runner(orchestrator)

    try:
        return asyncio.run(main())
    except CardSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
@card_options
def check(config: CardConfig) -> None:
    """Check files on the card.

    Lists every image file, marking targets with "*".
    """

    async def runner(orchestrator: SyncOrchestrator) -> bool:
        completed = await orchestrator.check()
        _print_catalog(orchestrator)
        return completed

    if not _run(config, runner):
        sys.exit(1)


@click.command()
@card_options
@click.option("--no-progress", is_flag=True, help="Disable progress output.")
def copy(config: CardConfig, no_progress: bool) -> None:
    """Check the card and copy new files."""

    if not _run(config, SyncOrchestrator.check_and_copy, show_progress=not no_progress):
        sys.exit(1)


@click.command()
@card_options
def watch(config: CardConfig) -> None:
    """Check and copy on an interval until interrupted."""

    async def runner(orchestrator: SyncOrchestrator) -> bool:
        await orchestrator.check_and_copy()
        orchestrator.start_auto()
        try:
            await asyncio.Event().wait()
        finally:
            orchestrator.stop()
        return True

    click.echo(f"Watching {config.remote_root} (Ctrl+C to stop)")
    try:
        _run(config, runner)
    except KeyboardInterrupt:
        click.echo("Stopped.")
