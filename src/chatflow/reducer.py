"""
Event reducer — folds a turn's prediction events into the session transcript.

One handler per event kind. Writes go to the turn's target message, resolved
once when the assistant placeholder is appended on `start`. Before that the
tail is targeted, provided it is not a user message. Every write replaces the
message with a mutated copy (see TranscriptStore.mutate).
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from chatflow.models.events import (
    AGENT_FLOW_IN_PROGRESS,
    Event,
    EventKind,
    Metadata,
    TERMINAL_EVENTS,
    parse_follow_up_prompts,
)
from chatflow.models.message import Message, NEXT_AGENT_KEY, strip_trailing_next_agent

if TYPE_CHECKING:
    from chatflow.session import ChatSession

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Oops! There seems to be an error. Please try again."
ERROR_PREFIX = "Unable to parse JSON response from chat agent.\n\n"
STOPPED_NOTICE = "Message stopped"


class Turn:
    """Control state for one submit-to-terminal unit of work."""
    __slots__ = ("input_text", "user_handle", "target", "terminal")

    def __init__(self, input_text: str, user_handle: Optional[int] = None):
        self.input_text = input_text
        self.user_handle = user_handle
        self.target: Optional[int] = None
        self.terminal: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.terminal is not None

    def __repr__(self) -> str:
        return f"Turn(input_text={self.input_text!r}, target={self.target!r}, terminal={self.terminal!r})"


class EventStreamReducer:
    def __init__(self, session: "ChatSession"):
        self._session = session
        self._handlers: dict[str, Callable[[Turn, Any], None]] = {
            EventKind.START: self._on_start,
            EventKind.TOKEN: self._on_token,
            EventKind.SOURCE_DOCUMENTS: self._field_setter("source_documents"),
            EventKind.USED_TOOLS: self._field_setter("used_tools"),
            EventKind.FILE_ANNOTATIONS: self._field_setter("file_annotations"),
            EventKind.AGENT_FLOW_EXECUTED_DATA: self._field_setter("agent_flow_executed_data"),
            EventKind.ACTION: self._field_setter("action"),
            EventKind.AGENT_REASONING: self._field_setter("agent_reasoning"),
            EventKind.ARTIFACTS: self._on_artifacts,
            EventKind.AGENT_FLOW_EVENT: self._on_agent_flow_event,
            EventKind.NEXT_AGENT: self._on_next_agent,
            EventKind.NEXT_AGENT_FLOW: self._on_next_agent_flow,
            EventKind.METADATA: self._on_metadata,
            EventKind.ERROR: self._on_error,
            EventKind.ABORT: self._on_abort,
            EventKind.END: self._on_end,
        }

    @property
    def _transcript(self):
        return self._session.transcript

    def apply(self, turn: Turn, event: Event) -> bool:
        """Apply one event; True once the turn has reached a terminal event."""
        if turn.done:
            logger.debug("Ignoring %s after terminal %s", event.event, turn.terminal)
            return True
        self._handlers[event.event](turn, event.data)
        if event.event in TERMINAL_EVENTS:
            turn.terminal = event.event
        self._session.notify_transcript()
        return turn.done

    # -- targeting --

    def _resolve_target(self, turn: Turn) -> Optional[int]:
        if turn.target is not None:
            return turn.target
        tail = self._transcript.tail_handle
        if self._transcript.get(tail).is_user:
            return None
        return tail

    def _write(self, turn: Turn, transform: Callable[[Message], None]) -> bool:
        handle = self._resolve_target(turn)
        if handle is None:
            logger.warning("Dropped stream write: no assistant message to target yet")
            return False
        return self._transcript.mutate(handle, transform)

    def _field_setter(self, field: str) -> Callable[[Turn, Any], None]:
        def handler(turn: Turn, data: Any) -> None:
            self._write(turn, lambda m: setattr(m, field, data))
        return handler

    # -- handlers --

    def _on_start(self, turn: Turn, _data: Any) -> None:
        turn.target = self._transcript.append(Message.assistant())

    def _on_token(self, turn: Turn, text: str) -> None:
        def append(m: Message) -> None:
            m.text += text
            m.feedback = None
        self._write(turn, append)

    def _on_artifacts(self, turn: Turn, artifacts: list[dict[str, Any]]) -> None:
        resolved = self._session.resolve_artifacts(artifacts)
        self._write(turn, lambda m: setattr(m, "artifacts", resolved))

    def _on_agent_flow_event(self, turn: Turn, status: str) -> None:
        if status == AGENT_FLOW_IN_PROGRESS:
            turn.target = self._transcript.append(Message.assistant(agent_flow_event_status=status))
            return
        self._write(turn, lambda m: setattr(m, "agent_flow_event_status", status))

    def _on_next_agent(self, turn: Turn, next_agent: Any) -> None:
        def mark(m: Message) -> None:
            if m.agent_reasoning:
                m.agent_reasoning = [*m.agent_reasoning, {NEXT_AGENT_KEY: next_agent}]
        self._write(turn, mark)

    def _on_next_agent_flow(self, _turn: Turn, payload: Any) -> None:
        self._session.observer.on_node_status(payload)

    def _on_metadata(self, turn: Turn, metadata: Metadata) -> None:
        self.apply_metadata(turn, metadata)

    def _on_error(self, _turn: Turn, message: str) -> None:
        self._transcript.append(Message.assistant(clean_error_message(message)))

    def _on_abort(self, turn: Turn, _data: Any) -> None:
        self.apply_abort(turn)

    def _on_end(self, _turn: Turn, _data: Any) -> None:
        self._session.persist()

    # -- shared with the synchronous path --

    def apply_metadata(self, turn: Turn, metadata: Metadata, assign_id: bool = True) -> None:
        if assign_id and metadata.chat_message_id:
            message_id = metadata.chat_message_id
            handle = self._resolve_target(turn)
            if handle is not None:
                self._transcript.mutate(handle, lambda m: setattr(m, "id", message_id))

        if metadata.chat_id:
            self._session.set_chat_id(metadata.chat_id)

        if turn.input_text == "" and metadata.question and turn.user_handle is not None:
            question = metadata.question
            if self._transcript.get(turn.user_handle).is_user:
                self._transcript.mutate(turn.user_handle, lambda m: setattr(m, "text", question), allow_user=True)

        if metadata.follow_up_prompts is not None:
            prompts = parse_follow_up_prompts(metadata.follow_up_prompts)
            handle = self._resolve_target(turn)
            if handle is not None:
                self._transcript.mutate(handle, lambda m: setattr(m, "follow_up_prompts", prompts))
            self._session.set_follow_up_prompts(prompts)

    def apply_abort(self, turn: Turn) -> None:
        def cleanup(m: Message) -> None:
            if m.agent_reasoning:
                m.agent_reasoning = strip_trailing_next_agent(m.agent_reasoning)
        self._write(turn, cleanup)
        self._session.stopping = False
        self._session.observer.on_notice(STOPPED_NOTICE)
        self._session.observer.focus_input()

    def fold_response(self, turn: Turn, data: Any) -> None:
        """Apply a synchronous prediction response in one step."""
        if not isinstance(data, dict):
            self._append_reply(turn, Message.assistant(response_text(data)))
            return
        metadata = Metadata.model_validate(data)
        # The reply message doesn't exist yet, so its id goes in with the message below.
        self.apply_metadata(turn, metadata, assign_id=False)
        artifacts = data.get("artifacts")
        message = Message.assistant(
            response_text(data),
            id=metadata.chat_message_id,
            source_documents=data.get("sourceDocuments"),
            used_tools=data.get("usedTools"),
            called_tools=data.get("calledTools"),
            file_annotations=data.get("fileAnnotations"),
            agent_reasoning=data.get("agentReasoning"),
            agent_flow_executed_data=data.get("agentFlowExecutedData"),
            action=data.get("action"),
            artifacts=self._session.resolve_artifacts(artifacts) if artifacts else None,
            follow_up_prompts=parse_follow_up_prompts(metadata.follow_up_prompts) if metadata.follow_up_prompts is not None else None,
        )
        self._append_reply(turn, message)

    def _append_reply(self, turn: Turn, message: Message) -> None:
        turn.target = self._transcript.append(message)
        turn.terminal = EventKind.END
        self._session.persist()
        self._session.notify_transcript()


def response_text(data: Any) -> str:
    """`text`, else a fenced JSON rendering of `json`, else the whole payload pretty-printed."""
    if not isinstance(data, dict):
        return json.dumps(data, indent=2)
    if data.get("text"):
        return data["text"]
    if data.get("json"):
        return "```json\n" + json.dumps(data["json"], indent=2) + "\n```"
    return json.dumps(data, indent=2)


def clean_error_message(message: Optional[str]) -> str:
    if not message:
        return GENERIC_ERROR
    return message.replace(ERROR_PREFIX, "")
