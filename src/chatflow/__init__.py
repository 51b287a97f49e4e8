"""
chatflow-client — async Python client for flow-based chat backends.

Streams prediction events into a live transcript, runs attachment uploads
ahead of each turn, and drives one turn at a time per session.
"""

from chatflow.client import Chatflow, AsyncChatflow
from chatflow.session import ChatSession, ChatObserver
from chatflow.flows import FlowsAPI
from chatflow.storage import MemoryStateStore, JsonFileStateStore
from chatflow.errors import (
    ChatflowError,
    HttpError,
    ConnectionError,
    SessionError,
    TurnInProgressError,
    InputDisabledError,
    AttachmentRejectedError,
    UploadError,
    EventPayloadError,
)
from chatflow.models.events import EventKind
from chatflow.models.message import Message, MessageRole, Rating

__version__ = "0.1.0"
__all__ = [
    "Chatflow",
    "AsyncChatflow",
    "ChatSession",
    "ChatObserver",
    "FlowsAPI",
    "MemoryStateStore",
    "JsonFileStateStore",
    "ChatflowError",
    "HttpError",
    "ConnectionError",
    "SessionError",
    "TurnInProgressError",
    "InputDisabledError",
    "AttachmentRejectedError",
    "UploadError",
    "EventPayloadError",
    "EventKind",
    "Message",
    "MessageRole",
    "Rating",
]
