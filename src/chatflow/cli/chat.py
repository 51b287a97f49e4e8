"""CLI: chatflow chat, chatflow send"""

import asyncio
import json
from typing import Optional

import click
from rich.console import Console

from chatflow.errors import ChatflowError, SessionError
from chatflow.lifecycle import needs_feedback
from chatflow.models.message import Message, MessageRole
from chatflow.session import ChatObserver, ChatSession

console = Console()

HELP = (
    "/up /down recall input, /attach PATH stage a file, /action N answer an action, "
    "/lead EMAIL [NAME] leave contact details, /stop cancel the reply, /quit exit"
)


def _get_client():
    from chatflow.cli.main import _get_client
    return _get_client()


def _run(coro):
    from chatflow.cli.main import _run
    return _run(coro)


class ConsoleObserver(ChatObserver):
    """Prints transcript growth as it happens: new messages and text deltas."""

    def __init__(self, console: Console):
        self.console = console
        self._index = 0
        self._printed = 0

    def on_transcript_changed(self, messages: list[Message]) -> None:
        while self._index < len(messages):
            message = messages[self._index]
            last = self._index == len(messages) - 1
            if not message.is_user:
                self._print_delta(message)
            if last:
                return
            self._finish(message)

    def _print_delta(self, message: Message) -> None:
        if message.role == MessageRole.LEAD_CAPTURE and not message.text:
            return
        if self._printed == 0 and message.text:
            self.console.print("[green]Assistant:[/green] ", end="")
        delta = message.text[self._printed:]
        if delta:
            self.console.print(delta, end="", markup=False, highlight=False)
            self._printed = len(message.text)

    def _finish(self, message: Message) -> None:
        if self._printed:
            self.console.print()
        if message.action and message.action.get("elements"):
            labels = [e.get("label", "?") for e in message.action["elements"]]
            self.console.print(f"[yellow]Action:[/yellow] {' | '.join(labels)}")
        self._index += 1
        self._printed = 0

    def flush(self, messages: list[Message]) -> None:
        """End the current line once a turn is over."""
        if messages and self._index == len(messages) - 1:
            self._finish(messages[-1])

    def on_warning(self, text: str) -> None:
        self.console.print(f"\n[red]{text}[/red]")

    def on_notice(self, text: str) -> None:
        self.console.print(f"\n[dim]{text}[/dim]")

    def on_node_status(self, payload) -> None:
        if isinstance(payload, dict) and payload.get("nodeLabel"):
            self.console.print(f"\n[dim][{payload['nodeLabel']}: {payload.get('status', '')}][/dim]")

    def on_follow_up_prompts(self, prompts: list[str]) -> None:
        for prompt in prompts:
            self.console.print(f"[cyan]Suggestion:[/cyan] {prompt}")


async def _repl(session: ChatSession, observer: ConsoleObserver) -> None:
    turn: Optional[asyncio.Task] = None

    def _done(task: asyncio.Task) -> None:
        observer.flush(session.transcript.snapshot())
        if not task.cancelled() and task.exception() is not None:
            console.print(f"[red]{task.exception()}[/red]")

    while True:
        try:
            line = await asyncio.to_thread(console.input, "[bold]You[/bold]: ")
        except (KeyboardInterrupt, EOFError):
            break
        command, _, arg = line.strip().partition(" ")

        if command in ("/quit", "/exit"):
            break
        if command == "/help":
            console.print(f"[dim]{HELP}[/dim]")
            continue
        if command == "/stop":
            if not await session.cancel():
                console.print("[dim]Nothing to stop.[/dim]")
            continue
        if command in ("/up", "/down"):
            recalled = session.recall_previous() if command == "/up" else session.recall_next()
            console.print(f"[dim]{recalled or '(empty)'}[/dim]  (send with /send)")
            continue
        if command == "/attach":
            try:
                staged = await session.add_files([arg.strip()]) if arg.strip() else []
            except OSError as e:
                console.print(f"[red]{e}[/red]")
                continue
            for draft in staged:
                console.print(f"[dim]Staged {draft.name} ({draft.kind})[/dim]")
            continue
        if command == "/lead":
            email, _, name = arg.strip().partition(" ")
            try:
                await session.submit_lead(name=name or None, email=email or None)
            except ChatflowError as e:
                console.print(f"[red]{e}[/red]")
            continue
        if turn is not None and not turn.done():
            console.print("[yellow]Still answering. Use /stop to cancel.[/yellow]")
            continue
        if command == "/action":
            turn = await _click_action(session, arg.strip())
            if turn is not None:
                turn.add_done_callback(_done)
            continue
        if command != "/send":
            session.input_text = line
        turn = asyncio.create_task(session.submit())
        turn.add_done_callback(_done)

    if turn is not None and not turn.done():
        await session.cancel()


async def _click_action(session: ChatSession, arg: str) -> Optional[asyncio.Task]:
    action = session.transcript.get_tail().action or {}
    elements = action.get("elements") or []
    try:
        element = elements[int(arg) - 1]
    except (ValueError, IndexError):
        console.print("[yellow]Pick an action by number, e.g. /action 1[/yellow]")
        return None
    feedback = None
    if needs_feedback(element, action):
        feedback = await asyncio.to_thread(console.input, "[bold]Feedback[/bold]: ")
    return asyncio.create_task(_answer_action(session, element, action, feedback))


async def _answer_action(session: ChatSession, element: dict, action: dict, feedback: Optional[str]) -> bool:
    sent = await session.click_action(element, action)
    if feedback is not None:
        sent = await session.confirm_action_feedback(feedback)
    return sent


@click.command("chat")
@click.argument("flow_id")
def chat_cmd(flow_id: str):
    """Interactive chat with a flow."""

    async def _chat():
        client = _get_client()
        observer = ConsoleObserver(console)
        try:
            with console.status("Opening session..."):
                session = await client.open_session(flow_id, observer=observer)
            observer.flush(session.transcript.snapshot())
            console.print(f"[dim]Chat: {session.chat_id}  {HELP}[/dim]\n")
            try:
                await _repl(session, observer)
            finally:
                await session.close()
        except SessionError as e:
            console.print(f"[red]{e}[/red]")
        finally:
            await client.close()

    _run(_chat())


@click.command("send")
@click.argument("flow_id")
@click.argument("message")
@click.option("-a", "--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(flow_id: str, message: str, attachments: tuple, json_output: bool):
    """Send a one-shot message."""

    async def _send():
        client = _get_client()
        try:
            replies = await client.ask(flow_id, message, list(attachments))
        except ChatflowError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()
        for reply in replies:
            if json_output:
                click.echo(json.dumps(reply.model_dump(by_alias=True, exclude_none=True)))
            elif not reply.is_user:
                console.print(f"[green]Assistant:[/green] {reply.text}")

    _run(_send())
