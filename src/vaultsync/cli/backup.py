"""Backup and sync commands for the vaultsync CLI.

Commands:
- backup: Back up every eligible document of a vault
- backup-page: Back up one document
- sync: Reconcile the vault with every provider
- archive: Store one zip bundle of the vault
- watch: Back up automatically while documents change
"""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from vaultsync.cli.config import load_cli_settings
from vaultsync.core.types import FatalInitializationError
from vaultsync.host.vault import MarkdownVault
from vaultsync.host.watcher import VaultWatcher
from vaultsync.notifications import Notifier
from vaultsync.service import BackupService

T = TypeVar("T")

vault_option = click.option(
    "--vault",
    "vault_path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Vault directory (pages/, journals/, assets/).",
)


def run_with_service(
    ctx: click.Context,
    vault_path: Path,
    action: Callable[[BackupService], Awaitable[T]],
) -> T:
    """Start a service for the vault, run action, and shut the service down.

    Exits with status 1 on FatalInitializationError.
    """
    settings = load_cli_settings(ctx)

    async def main() -> T:
        service = BackupService(
            MarkdownVault(vault_path),
            Notifier(desktop=settings.show_notifications),
            settings,
        )
        await service.start()
        try:
            return await action(service)
        finally:
            await service.shutdown()

    try:
        return asyncio.run(main())
    except FatalInitializationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
@vault_option
@click.pass_context
def backup(ctx: click.Context, vault_path: Path) -> None:
    """Back up every eligible document of a vault."""
    summary = run_with_service(ctx, vault_path, lambda s: s.trigger_full_backup())
    click.echo(summary.message())
    if summary.assets:
        click.echo(f"Assets backed up: {summary.assets}")


@click.command("backup-page")
@click.argument("name")
@vault_option
@click.pass_context
def backup_page(ctx: click.Context, name: str, vault_path: Path) -> None:
    """Back up the document NAME."""
    result = run_with_service(
        ctx, vault_path, lambda s: s.trigger_document_backup(name.lower())
    )
    if result is None:
        click.echo(f"{name}: not backed up")
        sys.exit(1)
    click.echo(
        f"{name}: {result.outcome.value} ({result.success_count}/{result.total_count} providers)"
    )
    for provider, reason in result.failures.items():
        click.echo(f"  {provider}: {reason}")


@click.command()
@vault_option
@click.pass_context
def sync(ctx: click.Context, vault_path: Path) -> None:
    """Push local changes and pull newer remote backups."""
    summary = run_with_service(ctx, vault_path, lambda s: s.sync_all())
    click.echo(summary.message())


@click.command()
@vault_option
@click.pass_context
def archive(ctx: click.Context, vault_path: Path) -> None:
    """Store one zip bundle of every eligible document."""
    result = run_with_service(ctx, vault_path, lambda s: s.archive())
    click.echo(
        f"Archive: {result.outcome.value} ({result.success_count}/{result.total_count} providers)"
    )


@click.command()
@vault_option
@click.option("--sync-on-start", is_flag=True, help="Run one sync pass before watching.")
@click.pass_context
def watch(ctx: click.Context, vault_path: Path, sync_on_start: bool) -> None:
    """Back up documents automatically as they change.

    Changes are coalesced: a backup pass runs once no document changed
    for the configured debounce time. Pending changes are flushed on exit.
    """

    async def action(service: BackupService) -> None:
        loop = asyncio.get_running_loop()
        if sync_on_start:
            await service.sync_all()

        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windows event loops
                pass

        vault = MarkdownVault(vault_path)
        with VaultWatcher(vault, service.on_host_change, loop):
            click.echo(
                f"Watching {vault.root} (debounce {service.settings.debounce_time:g}s). "
                "Press Ctrl+C to stop."
            )
            await stop.wait()
        click.echo("Stopping, flushing pending changes...")

    try:
        run_with_service(ctx, vault_path, action)
    except KeyboardInterrupt:
        click.echo("Interrupted")
