"""Configuration commands and shared helpers for the vaultsync CLI.

Commands:
- config show: Print the configuration (secrets masked)
- config set KEY VALUE: Change one setting (dotted keys, e.g. s3.bucket_name)
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from vaultsync.core.config import Settings, get_config_file, load_settings, save_settings

SECRET_KEYS = frozenset({"secret_access_key", "password"})
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure the vaultsync logger to print to stdout.

    Args:
        verbose: Log DEBUG messages instead of INFO.
    """
    root_logger = logging.getLogger("vaultsync")
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stdout_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def config_path(ctx: click.Context) -> Path:
    """Config file selected with --config, or the default one."""
    path: Path | None = ctx.obj.get("config_path") if ctx.obj else None
    return path or get_config_file()


def load_cli_settings(ctx: click.Context) -> Settings:
    """Load settings, exiting with an error message if they are invalid."""
    path = config_path(ctx)
    try:
        return load_settings(path)
    except (ValueError, TypeError) as e:
        click.echo(f"Error: Invalid configuration in {path}: {e}", err=True)
        sys.exit(1)


def mask_secrets(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of a settings dict with secret values replaced by ****."""
    masked: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            masked[key] = mask_secrets(value)
        elif key in SECRET_KEYS and value:
            masked[key] = "****"
        else:
            masked[key] = value
    return masked


def parse_value(raw: str) -> Any:
    """Interpret a command line value as JSON, falling back to a string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def set_dotted(data: dict[str, Any], key: str, value: Any) -> None:
    """Set a dotted key in a nested settings dict.

    Raises:
        KeyError: If the key does not name an existing setting.
    """
    *parents, leaf = key.split(".")
    target = data
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            raise KeyError(key)
        target = child
    if leaf not in target or isinstance(target[leaf], dict):
        raise KeyError(key)
    target[leaf] = value


@click.group()
def config() -> None:
    """Show or change the configuration."""


@config.command("show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print the configuration with secrets masked."""
    settings = load_cli_settings(ctx)
    click.echo(f"# {config_path(ctx)}")
    click.echo(json.dumps(mask_secrets(settings.to_dict()), indent=2))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str) -> None:
    """Change one setting.

    KEY uses dots for provider sections, for example:

        vaultsync config set s3.bucket_name my-bucket

        vaultsync config set local.enabled true
    """
    settings = load_cli_settings(ctx)
    data = settings.to_dict()
    try:
        set_dotted(data, key, parse_value(value))
        updated = Settings.from_dict(data)
    except KeyError:
        click.echo(f"Error: Unknown setting: {key}", err=True)
        sys.exit(1)
    except (ValueError, TypeError) as e:
        click.echo(f"Error: Invalid value for {key}: {e}", err=True)
        sys.exit(1)

    save_settings(updated, config_path(ctx))
    shown = "****" if key.rsplit(".", 1)[-1] in SECRET_KEYS else value
    click.echo(f"Set {key} = {shown}")
