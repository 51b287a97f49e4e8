"""CLI: chatflow config set|show"""

from typing import Optional

import click
from rich.console import Console

console = Console()


def _load_config() -> dict:
    from chatflow.cli.main import _load_config
    return _load_config()


def _save_config(cfg: dict) -> None:
    from chatflow.cli.main import _save_config
    _save_config(cfg)


def _resolve_settings() -> dict:
    from chatflow.cli.main import _resolve_settings
    return _resolve_settings()


def _mask(secret: Optional[str]) -> str:
    if not secret:
        return "(none)"
    return secret[:4] + "…" if len(secret) > 8 else "****"


@click.group()
def config():
    """Connection settings."""


@config.command("set")
@click.option("--base-url", default=None, help="Backend base URL, e.g. http://localhost:3000")
@click.option("--api-key", default=None, help="API key sent as a bearer token")
def config_set(base_url: Optional[str], api_key: Optional[str]):
    """Save connection settings to ~/.chatflow/config.json."""
    if base_url is None and api_key is None:
        raise click.UsageError("Nothing to set. Pass --base-url and/or --api-key.")
    cfg = _load_config()
    if base_url is not None:
        cfg["base_url"] = base_url.rstrip("/")
    if api_key is not None:
        cfg["api_key"] = api_key
    _save_config(cfg)
    console.print("[green]Saved.[/green]")


@config.command("show")
def config_show():
    """Show the effective settings (environment overrides included)."""
    settings = _resolve_settings()
    console.print(f"Base URL: [bold]{settings['base_url']}[/bold]")
    console.print(f"API key:  {_mask(settings['api_key'])}")
