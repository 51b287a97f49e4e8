"""
Flows REST API — capability reads, predictions, uploads, feedback and leads.
"""

from __future__ import annotations

from typing import Any, Optional

from chatflow.transport.http import FilePart, HttpClient
from chatflow.transport.sse import EventStream

FILE_STORAGE_PREFIX = "FILE-STORAGE::"


class FlowsAPI:
    def __init__(self, http: HttpClient):
        self._http = http

    async def is_streaming(self, flow_id: str) -> bool:
        result = await self._http.get(f"/chatflows-streaming/{flow_id}")
        return bool((result or {}).get("isStreaming", False))

    async def get_upload_constraints(self, flow_id: str) -> dict[str, Any]:
        return await self._http.get(f"/chatflows-uploads/{flow_id}") or {}

    async def get_flow(self, flow_id: str) -> dict[str, Any]:
        return await self._http.get(f"/chatflows/{flow_id}") or {}

    async def get_chat_messages(self, flow_id: str) -> list[dict[str, Any]]:
        return await self._http.get(f"/internal-chatmessage/{flow_id}") or []

    async def get_executions(self, flow_id: str) -> list[dict[str, Any]]:
        result = await self._http.get("/executions", params={"agentflowId": flow_id})
        if isinstance(result, dict):
            return result.get("data") or []
        return result or []

    async def predict(self, flow_id: str, params: dict[str, Any]) -> Any:
        """Synchronous prediction — one JSON response for the whole turn."""
        return await self._http.post(f"/internal-prediction/{flow_id}", params) or {}

    def prediction_stream(self, flow_id: str, params: dict[str, Any]) -> EventStream:
        """Streaming prediction channel. Not opened until entered."""
        return EventStream(self._http, f"/internal-prediction/{flow_id}", {**params, "streaming": True})

    async def abort(self, flow_id: str, chat_id: str) -> Any:
        return await self._http.put(f"/chatmessage/abort/{flow_id}/{chat_id}")

    async def create_attachments(self, flow_id: str, chat_id: str, files: list[FilePart]) -> list[dict[str, Any]]:
        """Full-file ingestion. Returns one {name, content} record per extracted file."""
        return await self._http.upload(f"/attachments/{flow_id}/{chat_id}", files, data={"chatId": chat_id}) or []

    async def upsert_vector_store(self, flow_id: str, chat_id: str, files: list[FilePart]) -> Any:
        """RAG ingestion. The acknowledgment does not mean the vectors are queryable yet."""
        return await self._http.upload(f"/vector/internal-upsert/{flow_id}", files, data={"chatId": chat_id})

    async def add_feedback(self, flow_id: str, chat_id: str, message_id: str, rating: str, content: str = "") -> Any:
        return await self._http.post(f"/feedback/{flow_id}", {
            "chatflowid": flow_id,
            "chatId": chat_id,
            "messageId": message_id,
            "rating": rating,
            "content": content,
        }) or {}

    async def update_feedback(self, feedback_id: str, content: str) -> dict[str, Any]:
        return await self._http.put(f"/feedback/{feedback_id}", {"content": content}) or {}

    async def add_lead(
        self, flow_id: str, chat_id: str, name: Optional[str], email: Optional[str], phone: Optional[str],
    ) -> Any:
        return await self._http.post("/leads", {
            "chatflowid": flow_id,
            "chatId": chat_id,
            "name": name,
            "email": email,
            "phone": phone,
        }) or {}

    def upload_file_url(self, flow_id: str, chat_id: str, file_name: str) -> str:
        """Download URL for a file the backend keeps in its file storage."""
        return self._http.url("/get-upload-file", {
            "chatflowId": flow_id,
            "chatId": chat_id,
            "fileName": file_name.replace(FILE_STORAGE_PREFIX, ""),
        })
