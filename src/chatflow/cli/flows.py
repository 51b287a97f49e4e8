"""CLI: chatflow flow"""

import json

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _get_client():
    from chatflow.cli.main import _get_client
    return _get_client()


def _run(coro):
    from chatflow.cli.main import _run
    return _run(coro)


@click.command("flow")
@click.argument("flow_id")
@click.option("--json-output", "--json", is_flag=True)
def flow_cmd(flow_id: str, json_output: bool):
    """Show what a flow supports."""

    async def _show():
        client = _get_client()
        try:
            info = await client.flow_info(flow_id)
        finally:
            await client.close()

        uploads, cfg = info["uploads"], info["config"]
        if json_output:
            click.echo(json.dumps({
                "streaming": info["streaming"],
                "uploads": uploads.model_dump(by_alias=True),
                "config": cfg.model_dump(),
            }, indent=2))
            return

        table = Table(title=f"Flow {flow_id}", show_header=False)
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        table.add_row("Streaming", str(info["streaming"]))
        table.add_row("Image uploads", ", ".join(sorted(uploads.image_mime_types)) if uploads.is_image_upload_allowed else "off")
        table.add_row("Document uploads", _describe_rules(uploads) if uploads.is_rag_file_upload_allowed else "off")
        table.add_row("Full file upload", str(cfg.full_file_upload.status))
        table.add_row("Speech to text", str(uploads.is_speech_to_text_enabled))
        table.add_row("Chat feedback", str(cfg.chat_feedback_enabled))
        table.add_row("Follow-up prompts", str(cfg.follow_up_prompts_enabled))
        table.add_row("Lead capture", str(cfg.leads_required))
        if cfg.start_form:
            table.add_row("Start form", cfg.start_form.title or "(untitled)")
        for i, prompt in enumerate(cfg.starter_prompts, 1):
            table.add_row(f"Starter {i}", prompt)
        console.print(table)

    _run(_show())


def _describe_rules(uploads) -> str:
    types = {t for rule in uploads.file_upload_size_and_types for t in rule.file_types}
    return ", ".join(sorted(types)) or "(none)"
