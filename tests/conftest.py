"""Shared fixtures: an in-process fake of the chatflow backend behind httpx.MockTransport."""

import asyncio
import json
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from chatflow import AsyncChatflow, ChatObserver, MemoryStateStore
from chatflow.transport.http import API_PREFIX

FLOW_ID = "flow-1"


class RecordingObserver(ChatObserver):
    def __init__(self) -> None:
        self.snapshots: list[list[Any]] = []
        self.warnings: list[str] = []
        self.notices: list[str] = []
        self.node_status: list[Any] = []
        self.node_status_cleared = 0
        self.follow_up_prompts: list[list[str]] = []
        self.focused = 0
        self.scrolled = 0

    def on_transcript_changed(self, messages):
        self.snapshots.append(messages)

    def on_warning(self, text):
        self.warnings.append(text)

    def on_notice(self, text):
        self.notices.append(text)

    def on_node_status(self, payload):
        self.node_status.append(payload)

    def on_node_status_cleared(self):
        self.node_status_cleared += 1

    def on_follow_up_prompts(self, prompts):
        self.follow_up_prompts.append(prompts)

    def focus_input(self):
        self.focused += 1

    def scroll_to_latest(self):
        self.scrolled += 1


def sse(event: str, data: Any = None) -> dict[str, Any]:
    return {"event": event, "data": data}


class Call:
    __slots__ = ("method", "path", "params", "body", "raw")

    def __init__(self, request: httpx.Request):
        self.method = request.method
        self.path = request.url.path[len(API_PREFIX):]
        self.params = dict(request.url.params)
        self.raw = request.content
        self.body: Any = None
        if request.headers.get("content-type", "").startswith("application/json"):
            self.body = json.loads(request.content)

    def __repr__(self) -> str:
        return f"Call({self.method} {self.path})"


class FakeBackend:
    """Answers every endpoint the client uses. Tests tweak the attributes."""

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.streaming = False
        self.constraints: dict[str, Any] = {}
        self.chatflow: dict[str, Any] = {}
        self.history: list[dict[str, Any]] = []
        self.executions: list[dict[str, Any]] = []
        self.prediction: dict[str, Any] = {"text": "Hello back", "chatId": "chat-server", "chatMessageId": "msg-1"}
        self.events: list[dict[str, Any]] = []
        self.raw_frames: list[str] = []
        self.attachments: list[dict[str, Any]] = []
        self.feedback_id = "fb-1"
        self.lead_chat_id: Optional[str] = None
        self.failures: dict[str, tuple[int, str]] = {}
        self.replies: dict[str, Any] = {}
        # Streams hold before event `hold_at`, sync predictions hold whenever it is set, until `release`.
        self.hold_at: Optional[int] = None
        self.release: Optional[asyncio.Event] = None
        self.break_at: Optional[int] = None

    def fail(self, prefix: str, status: int = 500, message: str = "Backend exploded") -> None:
        self.failures[prefix] = (status, message)

    def reply(self, prefix: str, body: Any) -> None:
        self.replies[prefix] = body

    def calls_to(self, prefix: str, method: Optional[str] = None) -> list[Call]:
        return [c for c in self.calls if c.path.startswith(prefix) and (method is None or c.method == method)]

    @property
    def prediction_calls(self) -> list[Call]:
        return self.calls_to("/internal-prediction/")

    async def handle(self, request: httpx.Request) -> httpx.Response:
        call = Call(request)
        self.calls.append(call)
        path = call.path

        for prefix, (status, message) in self.failures.items():
            if path.startswith(prefix):
                return httpx.Response(status, json={"message": message})
        for prefix, body in self.replies.items():
            if path.startswith(prefix):
                return httpx.Response(200, json=body)

        if path.startswith("/chatflows-streaming/"):
            return httpx.Response(200, json={"isStreaming": self.streaming})
        if path.startswith("/chatflows-uploads/"):
            return httpx.Response(200, json=self.constraints)
        if path.startswith("/chatflows/"):
            return httpx.Response(200, json=self.chatflow)
        if path.startswith("/internal-chatmessage/"):
            return httpx.Response(200, json=self.history)
        if path == "/executions":
            return httpx.Response(200, json={"data": self.executions})
        if path.startswith("/internal-prediction/"):
            if call.body.get("streaming"):
                return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._frames())
            if self.hold_at is not None and self.release is not None:
                await self.release.wait()
            return httpx.Response(200, json=self.prediction)
        if path.startswith("/chatmessage/abort/"):
            if self.release is not None:
                self.release.set()
            return httpx.Response(200, json={"status": 200})
        if path.startswith("/attachments/"):
            return httpx.Response(200, json=self.attachments)
        if path.startswith("/vector/internal-upsert/"):
            return httpx.Response(200, json={"numAdded": 1})
        if path.startswith("/feedback/") and request.method == "POST":
            return httpx.Response(200, json={"id": self.feedback_id, **call.body})
        if path.startswith("/feedback/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], **call.body})
        if path == "/leads":
            return httpx.Response(200, json={**call.body, "chatId": self.lead_chat_id or call.body["chatId"]})
        return httpx.Response(404, json={"message": f"No route for {path}"})

    async def _frames(self):
        for frame in self.raw_frames:
            yield f"data: {frame}\n\n".encode()
        for index, event in enumerate(self.events):
            if index == self.hold_at and self.release is not None:
                await self.release.wait()
            if index == self.break_at:
                raise httpx.ReadError("connection reset by peer")
            yield f"data: {json.dumps(event)}\n\n".encode()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest_asyncio.fixture
async def client(backend, store):
    c = AsyncChatflow(
        base_url="http://chatflow.test",
        transport=httpx.MockTransport(backend.handle),
        rag_settle_seconds=0,
        store=store,
    )
    yield c
    await c.close()
