"""
Chatflow CLI — `chatflow` command.

Commands:
  chatflow config set|show        Saved connection settings
  chatflow flow <flow-id>         Capabilities and config of a flow
  chatflow chat <flow-id>         Interactive REPL chat
  chatflow send <flow-id> <msg>   One-shot message
"""

import asyncio
import json
import logging
import os
from pathlib import Path

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install chatflow-client[cli]")

from chatflow.client import AsyncChatflow
from chatflow.storage import JsonFileStateStore
from chatflow.transport.http import DEFAULT_BASE_URL

console = Console()
CONFIG_FILE = Path.home() / ".chatflow" / "config.json"


def _load_config() -> dict:
    try:
        return json.loads(CONFIG_FILE.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def _save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(cfg, indent=2))


def _resolve_settings() -> dict:
    """Environment variables win over the saved config file."""
    cfg = _load_config()
    return {
        "base_url": os.environ.get("CHATFLOW_BASE_URL") or cfg.get("base_url") or DEFAULT_BASE_URL,
        "api_key": os.environ.get("CHATFLOW_API_KEY") or cfg.get("api_key"),
    }


def _get_client() -> AsyncChatflow:
    settings = _resolve_settings()
    return AsyncChatflow(
        base_url=settings["base_url"],
        api_key=settings["api_key"],
        store=JsonFileStateStore(),
    )


def _run(coro):
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=verbose)],
    )
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """Chatflow CLI — talk to flow-based chat backends."""
    _setup_logging(verbose)


# Register subcommands from separate modules
from chatflow.cli.config import config
from chatflow.cli.flows import flow_cmd
from chatflow.cli.chat import chat_cmd, send_cmd

main.add_command(config)
main.add_command(flow_cmd)
main.add_command(chat_cmd)
main.add_command(send_cmd)


if __name__ == "__main__":
    main()
