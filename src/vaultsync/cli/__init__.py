"""Command-line interface for vaultsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- backup: Back up every eligible document of a vault
- backup-page: Back up one document
- sync: Reconcile a vault with every provider
- archive: Store one zip bundle of a vault
- watch: Back up automatically while documents change
- providers: Show provider status, optionally test connections
- config: Show or change the configuration
"""

from __future__ import annotations

from pathlib import Path

import click

from vaultsync.cli.backup import archive, backup, backup_page, sync, watch
from vaultsync.cli.config import config, setup_logging
from vaultsync.cli.providers import providers


@click.group()
@click.version_option(package_name="vaultsync")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.vaultsync/config.json).",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """vaultsync - Backup and sync of markdown vaults to S3, WebDAV and local storage."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    setup_logging(verbose)


# Backup commands
cli.add_command(backup)
cli.add_command(backup_page)
cli.add_command(archive)

# Sync commands
cli.add_command(sync)
cli.add_command(watch)

# Configuration commands
cli.add_command(providers)
cli.add_command(config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
