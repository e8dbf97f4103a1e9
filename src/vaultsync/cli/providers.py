"""Provider status command for the vaultsync CLI.

Commands:
- providers: Show which providers are enabled and optionally test them
"""

from __future__ import annotations

import asyncio

import click

from vaultsync.cli.config import load_cli_settings
from vaultsync.core.config import (
    PROVIDER_ORDER,
    Settings,
    is_provider_toggled,
    validate_provider_config,
)
from vaultsync.providers.registry import create_provider


async def check_provider(kind: str, settings: Settings) -> tuple[bool, str]:
    """Initialize a provider and test its connection."""
    provider = create_provider(kind)
    try:
        if not await provider.initialize(settings):
            return False, "Initialization failed"
        return await provider.test_connection()
    finally:
        await provider.close()


@click.command()
@click.option("--check", is_flag=True, help="Test the connection of enabled providers.")
@click.pass_context
def providers(ctx: click.Context, check: bool) -> None:
    """Show provider configuration status."""
    settings = load_cli_settings(ctx)

    enabled: list[str] = []
    for kind in PROVIDER_ORDER:
        display_name = create_provider(kind).display_name
        if not is_provider_toggled(kind, settings):
            click.echo(f"{kind:<7} disabled   {display_name}")
            continue

        errors = validate_provider_config(kind, settings)
        if errors:
            click.echo(f"{kind:<7} invalid    {display_name}")
            for error in errors:
                click.echo(f"          {error}")
            continue

        click.echo(f"{kind:<7} enabled    {display_name}")
        enabled.append(kind)

    if not enabled:
        click.echo("No backup providers enabled. Please configure a provider first.")
        return

    if check:
        for kind in enabled:
            ok, message = asyncio.run(check_provider(kind, settings))
            status = "OK" if ok else "FAILED"
            click.echo(f"{kind}: {status} - {message}")
