"""
Transcript message models.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class MessageRole:
    USER = "userMessage"
    ASSISTANT = "apiMessage"
    LEAD_CAPTURE = "leadCaptureMessage"


class Rating:
    THUMBS_UP = "THUMBS_UP"
    THUMBS_DOWN = "THUMBS_DOWN"


NEXT_AGENT_KEY = "nextAgent"


class FileUpload(BaseModel):
    """Attachment as embedded in a message (`uploads` wire shape)."""
    data: str = ""
    type: str = "file"
    name: str = ""
    mime: str = ""


class Feedback(BaseModel):
    rating: str


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None
    role: str = MessageRole.ASSISTANT
    text: str = ""
    source_documents: Optional[list[Any]] = None
    used_tools: Optional[list[Any]] = None
    called_tools: Optional[list[Any]] = None
    file_annotations: Optional[list[Any]] = None
    agent_reasoning: Optional[list[dict[str, Any]]] = None
    agent_flow_executed_data: Optional[Any] = None
    agent_flow_event_status: Optional[str] = None
    agent_flow: Optional[Any] = None
    action: Optional[dict[str, Any]] = None
    artifacts: Optional[list[dict[str, Any]]] = None
    file_uploads: Optional[list[FileUpload]] = None
    feedback: Optional[Feedback] = None
    follow_up_prompts: Optional[list[str]] = None

    @classmethod
    def user(cls, text: str, file_uploads: Optional[list[FileUpload]] = None) -> "Message":
        return cls(id=str(uuid.uuid4()), role=MessageRole.USER, text=text, file_uploads=file_uploads)

    @classmethod
    def assistant(cls, text: str = "", **fields: Any) -> "Message":
        return cls(role=MessageRole.ASSISTANT, text=text, **fields)

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER

    @property
    def has_pending_action(self) -> bool:
        """True while an action prompt with at least one interactive element is unanswered."""
        return bool(self.action and self.action.get("elements"))


def is_next_agent_marker(step: Any) -> bool:
    return isinstance(step, dict) and set(step) == {NEXT_AGENT_KEY}


def strip_trailing_next_agent(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop the maximal trailing run of bare next-agent markers."""
    end = len(steps)
    while end > 0 and is_next_agent_marker(steps[end - 1]):
        end -= 1
    return steps[:end]
