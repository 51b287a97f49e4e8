"""
Chatflow / AsyncChatflow — main client entry points.
"""

import asyncio
from pathlib import Path
from typing import Any, Optional, Union

import httpx

from chatflow.attachments import DEFAULT_RAG_SETTLE_SECONDS
from chatflow.flows import FlowsAPI
from chatflow.models.attachment import LocalFile
from chatflow.models.flow import FlowConfig, UploadConstraints
from chatflow.models.message import Message
from chatflow.session import ChatObserver, ChatSession
from chatflow.storage import MemoryStateStore
from chatflow.transport.http import DEFAULT_BASE_URL, HttpClient


class AsyncChatflow:
    """Async chatflow client (primary)."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        rag_settle_seconds: float = DEFAULT_RAG_SETTLE_SECONDS,
        store: Optional[MemoryStateStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.http = HttpClient(base_url=base_url, api_key=api_key, timeout=timeout, transport=transport)
        self.flows = FlowsAPI(self.http)
        self.store = store if store is not None else MemoryStateStore()
        self._rag_settle_seconds = rag_settle_seconds

    async def __aenter__(self) -> "AsyncChatflow":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open_session(self, flow_id: str, observer: Optional[ChatObserver] = None) -> ChatSession:
        """Create and open a session for `flow_id`. Close it with `session.close()`."""
        session = ChatSession(
            flow_id,
            self.flows,
            store=self.store,
            observer=observer,
            rag_settle_seconds=self._rag_settle_seconds,
        )
        await session.open()
        return session

    async def ask(
        self,
        flow_id: str,
        question: str,
        files: Optional[list[Union[str, Path, LocalFile]]] = None,
    ) -> list[Message]:
        """One-shot turn: open a session, send, and return the messages the turn added."""
        session = await self.open_session(flow_id)
        try:
            if files:
                await session.add_files(files)
            before = len(session.transcript)
            await session.submit(question)
            return session.transcript.snapshot()[before:]
        finally:
            await session.close()

    async def flow_info(self, flow_id: str) -> dict[str, Any]:
        """Capability reads for a flow, as taken at session open."""
        streaming, constraints, chatflow = await asyncio.gather(
            self.flows.is_streaming(flow_id),
            self.flows.get_upload_constraints(flow_id),
            self.flows.get_flow(flow_id),
        )
        return {
            "streaming": streaming,
            "uploads": UploadConstraints.model_validate(constraints),
            "config": FlowConfig.from_chatflow(chatflow),
        }

    async def close(self) -> None:
        await self.http.close()


class Chatflow:
    """Sync wrapper around AsyncChatflow. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._async = AsyncChatflow(**kwargs)
        self._loop = asyncio.new_event_loop()

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def flows(self) -> FlowsAPI:
        return self._async.flows

    def ask(self, flow_id: str, question: str, files: Optional[list[Union[str, Path, LocalFile]]] = None) -> list[Message]:
        return self._run(self._async.ask(flow_id, question, files))

    def flow_info(self, flow_id: str) -> dict[str, Any]:
        return self._run(self._async.flow_info(flow_id))

    def close(self) -> None:
        self._run(self._async.close())
        self._loop.close()
