"""
Prediction stream events.

Each server-sent frame carries `{"event": <kind>, "data": <payload>}`. Kinds form
a closed set; every kind has its own payload shape and anything that does not
match is rejected rather than coerced.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chatflow.errors import EventPayloadError


class EventKind:
    START = "start"
    TOKEN = "token"
    SOURCE_DOCUMENTS = "sourceDocuments"
    USED_TOOLS = "usedTools"
    FILE_ANNOTATIONS = "fileAnnotations"
    AGENT_REASONING = "agentReasoning"
    AGENT_FLOW_EVENT = "agentFlowEvent"
    AGENT_FLOW_EXECUTED_DATA = "agentFlowExecutedData"
    ARTIFACTS = "artifacts"
    ACTION = "action"
    NEXT_AGENT = "nextAgent"
    NEXT_AGENT_FLOW = "nextAgentFlow"
    METADATA = "metadata"
    ERROR = "error"
    ABORT = "abort"
    END = "end"


TERMINAL_EVENTS = {EventKind.ERROR, EventKind.ABORT, EventKind.END}

AGENT_FLOW_IN_PROGRESS = "INPROGRESS"


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class StartEvent(_Event):
    event: Literal["start"]
    data: Any = None


class TokenEvent(_Event):
    event: Literal["token"]
    data: str


class SourceDocumentsEvent(_Event):
    event: Literal["sourceDocuments"]
    data: list[Any]


class UsedToolsEvent(_Event):
    event: Literal["usedTools"]
    data: list[Any]


class FileAnnotationsEvent(_Event):
    event: Literal["fileAnnotations"]
    data: list[Any]


class AgentReasoningEvent(_Event):
    event: Literal["agentReasoning"]
    data: list[dict[str, Any]]


class AgentFlowEvent(_Event):
    event: Literal["agentFlowEvent"]
    data: str


class AgentFlowExecutedDataEvent(_Event):
    event: Literal["agentFlowExecutedData"]
    data: Any


class ArtifactsEvent(_Event):
    event: Literal["artifacts"]
    data: list[dict[str, Any]]


class ActionEvent(_Event):
    event: Literal["action"]
    data: Optional[dict[str, Any]] = None


class NextAgentEvent(_Event):
    event: Literal["nextAgent"]
    data: Any


class NextAgentFlowEvent(_Event):
    event: Literal["nextAgentFlow"]
    data: Any


class Metadata(BaseModel):
    """`metadata` payload; also the shape of correlation fields in sync responses."""
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    chat_id: Optional[str] = Field(default=None, alias="chatId")
    chat_message_id: Optional[str] = Field(default=None, alias="chatMessageId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    question: Optional[str] = None
    follow_up_prompts: Optional[Union[str, list[Any]]] = Field(default=None, alias="followUpPrompts")


class MetadataEvent(_Event):
    event: Literal["metadata"]
    data: Metadata


class ErrorEvent(_Event):
    event: Literal["error"]
    data: str


class AbortEvent(_Event):
    event: Literal["abort"]
    data: Any = None


class EndEvent(_Event):
    event: Literal["end"]
    data: Any = None


Event = Annotated[
    Union[
        StartEvent, TokenEvent, SourceDocumentsEvent, UsedToolsEvent, FileAnnotationsEvent,
        AgentReasoningEvent, AgentFlowEvent, AgentFlowExecutedDataEvent, ArtifactsEvent,
        ActionEvent, NextAgentEvent, NextAgentFlowEvent, MetadataEvent, ErrorEvent,
        AbortEvent, EndEvent,
    ],
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(raw: Union[str, bytes, dict[str, Any]]) -> Event:
    """Validate one frame into its typed event. Raises EventPayloadError on any mismatch."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EventPayloadError(f"Event frame is not JSON: {e}", raw=raw)
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as e:
        kind = raw.get("event") if isinstance(raw, dict) else None
        raise EventPayloadError(f"Invalid payload for event {kind!r}: {e.error_count()} error(s)", raw=raw)


def parse_follow_up_prompts(value: Union[str, list[Any], None]) -> list[str]:
    """Follow-up prompts arrive JSON-encoded, sometimes twice."""
    if value is None:
        return []
    prompts: Any = value
    while isinstance(prompts, str):
        try:
            prompts = json.loads(prompts)
        except json.JSONDecodeError:
            return []
    if not isinstance(prompts, list):
        return []
    return [str(p) for p in prompts]
