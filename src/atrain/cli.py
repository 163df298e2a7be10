"""Command-line interface for A-Train.

Commands:
- run: Build the orchestrator and poll the configured drives
- check: Build the orchestrator (verifies Autoscan) and exit
- status: Show what is indexed for each configured drive
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from atrain.core.config import load_config
from atrain.core.errors import AtrainError
from atrain.core.logging import setup_logging
from atrain.orchestrator import Atrain, AtrainBuilder
from atrain.supervisor import Supervisor

logger = logging.getLogger(__name__)

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="a-train.toml",
    show_default=True,
    envvar="ATRAIN_CONFIG",
    help="Path to the configuration file.",
)
database_option = click.option(
    "--database",
    "-d",
    "database_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="a-train.db",
    show_default=True,
    envvar="ATRAIN_DATABASE",
    help="Path to the SQLite index.",
)
proxy_option = click.option(
    "--proxy",
    envvar="ATRAIN_PROXY",
    default=None,
    help="Outbound proxy URL for Google and Autoscan.",
)


async def build_atrain(config_path: Path, database_path: Path, proxy: str | None) -> Atrain:
    """Load configuration and build a ready orchestrator."""
    config = load_config(config_path)
    builder = AtrainBuilder.from_config(config, database_path)
    if proxy:
        builder = builder.with_proxy(proxy)
    return await builder.build()


async def _run(config_path: Path, database_path: Path, proxy: str | None, once: bool) -> None:
    async with await build_atrain(config_path, database_path, proxy) as atrain:
        if once:
            change_sets = await atrain.sync()
            for changes in change_sets:
                click.echo(
                    f"{changes.drive_id}: {len(changes.created)} created, "
                    f"{len(changes.deleted)} deleted"
                )
            return
        await Supervisor(atrain).run()


async def _check(config_path: Path, database_path: Path, proxy: str | None) -> int:
    async with await build_atrain(config_path, database_path, proxy) as atrain:
        return len(atrain.pool)


async def _status(config_path: Path, database_path: Path, proxy: str | None) -> None:
    async with await build_atrain(config_path, database_path, proxy) as atrain:
        for drive_id in atrain.drives:
            summary = atrain.select_index_client().drive_summary(drive_id)
            token = summary.page_token or "not indexed"
            click.echo(f"{drive_id}: {summary.item_count} items (page token: {token})")


@click.group()
@click.version_option(package_name="atrain")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """A-Train - Google Shared Drive change feed for Autoscan."""
    setup_logging(verbose)


@cli.command()
@config_option
@database_option
@proxy_option
@click.option("--once", is_flag=True, help="Sync every drive once and exit.")
def run(config_path: Path, database_path: Path, proxy: str | None, once: bool) -> None:
    """Poll the configured Shared Drives and notify Autoscan."""
    try:
        asyncio.run(_run(config_path, database_path, proxy, once))
    except AtrainError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


@cli.command()
@config_option
@database_option
@proxy_option
def check(config_path: Path, database_path: Path, proxy: str | None) -> None:
    """Verify accounts and Autoscan without syncing."""
    try:
        pool_size = asyncio.run(_check(config_path, database_path, proxy))
    except AtrainError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"OK: {pool_size} index clients, Autoscan is available")


@cli.command()
@config_option
@database_option
@proxy_option
def status(config_path: Path, database_path: Path, proxy: str | None) -> None:
    """Show what is indexed for each configured drive."""
    try:
        asyncio.run(_status(config_path, database_path, proxy))
    except AtrainError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    """Entry point for the CLI."""
    cli()
