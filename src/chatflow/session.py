"""
Chat session — the single aggregate holding all state for one flow conversation.

Owns the transcript, staged attachment drafts, input recall, the capability
reads taken at open, and session correlation. Turns are run by the session's
RequestLifecycle; UI effects go out through a ChatObserver.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any, Iterable, Optional, Union

from chatflow.attachments import DEFAULT_RAG_SETTLE_SECONDS, AttachmentPipeline, encode_fragment, encode_recording
from chatflow.errors import AttachmentRejectedError, ChatflowError, SessionError
from chatflow.flows import FlowsAPI
from chatflow.history import InputHistory
from chatflow.lifecycle import RequestLifecycle
from chatflow.models.attachment import Attachment, LocalFile
from chatflow.models.events import parse_follow_up_prompts
from chatflow.models.flow import FlowConfig, UploadConstraints, loads_json
from chatflow.models.message import Feedback, FileUpload, Message, MessageRole
from chatflow.storage import MemoryStateStore
from chatflow.transcript import TranscriptStore

logger = logging.getLogger(__name__)

IMAGE_ARTIFACT_TYPES = {"png", "jpeg"}
STORED_FILE = "stored-file"
LEAD_SAVED_MESSAGE = "Thank you for submitting your contact information."

_HISTORY_FIELDS = {
    "sourceDocuments": "source_documents",
    "usedTools": "used_tools",
    "fileAnnotations": "file_annotations",
    "agentReasoning": "agent_reasoning",
    "action": "action",
}


class ChatObserver:
    """UI-side hooks. All no-ops; override what the front-end needs."""

    def on_transcript_changed(self, messages: list[Message]) -> None:
        pass

    def on_warning(self, text: str) -> None:
        pass

    def on_notice(self, text: str) -> None:
        pass

    def on_node_status(self, payload: Any) -> None:
        pass

    def on_node_status_cleared(self) -> None:
        pass

    def on_follow_up_prompts(self, prompts: list[str]) -> None:
        pass

    def focus_input(self) -> None:
        pass

    def scroll_to_latest(self) -> None:
        pass


class ChatSession:
    def __init__(
        self,
        flow_id: str,
        api: FlowsAPI,
        store: Optional[MemoryStateStore] = None,
        observer: Optional[ChatObserver] = None,
        rag_settle_seconds: float = DEFAULT_RAG_SETTLE_SECONDS,
    ):
        self.flow_id = flow_id
        self.api = api
        self.store = store if store is not None else MemoryStateStore()
        self.observer = observer or ChatObserver()
        self.chat_id = str(uuid.uuid4())

        self.transcript = TranscriptStore()
        self.input_history = InputHistory()
        self.input_text = ""
        self.drafts: list[Attachment] = []
        self.follow_up_prompts: list[str] = []

        self.is_streaming = False
        self.constraints = UploadConstraints()
        self.config = FlowConfig()

        self.lead: Optional[dict[str, Any]] = None
        self.loading = False
        self.stopping = False
        self.opened = False

        self.pipeline = AttachmentPipeline(api, rag_settle_seconds)
        self.lifecycle = RequestLifecycle(self)

    def __repr__(self) -> str:
        return f"ChatSession(flow_id={self.flow_id!r}, chat_id={self.chat_id!r})"

    # -- open / close --

    async def open(self) -> None:
        """Read capabilities and config, restore prior history."""
        saved = self.store.get_flow(self.flow_id)
        if saved.get("chatId"):
            self.chat_id = saved["chatId"]
        self.lead = saved.get("lead")

        try:
            history, streaming, constraints, chatflow = await asyncio.gather(
                self.api.get_chat_messages(self.flow_id),
                self.api.is_streaming(self.flow_id),
                self.api.get_upload_constraints(self.flow_id),
                self.api.get_flow(self.flow_id),
            )
            self.is_streaming = streaming
            self.constraints = UploadConstraints.model_validate(constraints)
            self.config = FlowConfig.from_chatflow(chatflow)
            self._restore_history(history)
            if self.config.has_start_node:
                self._restore_executions(await self.api.get_executions(self.flow_id))
        except ChatflowError as e:
            raise SessionError(f"Failed to open session for flow {self.flow_id}: {e}")

        if self.config.leads_required and not self.lead_saved:
            self.transcript.append(Message(role=MessageRole.LEAD_CAPTURE))
        if self.config.follow_up_prompts_enabled:
            tail = self.transcript.get_tail()
            if tail.role == MessageRole.ASSISTANT and tail.follow_up_prompts:
                self.set_follow_up_prompts(tail.follow_up_prompts)

        self.opened = True
        logger.info("Opened %r (streaming=%s)", self, self.is_streaming)
        self.notify_transcript()
        self.observer.focus_input()

    async def close(self) -> None:
        """Tear down any live stream and reset to a fresh transcript."""
        await self.lifecycle.teardown()
        self.input_text = ""
        self.drafts = []
        self.loading = False
        self.stopping = False
        self.transcript.reset()
        self.opened = False

    def _restore_history(self, history: list[dict[str, Any]]) -> None:
        if not history:
            return
        chat_id = history[0].get("chatId")
        if chat_id:
            self.chat_id = chat_id
        self.transcript.extend(self._message_from_history(raw) for raw in history)
        self.persist()

    def _message_from_history(self, raw: dict[str, Any]) -> Message:
        message = Message(id=raw.get("id"), role=raw.get("role") or MessageRole.ASSISTANT, text=raw.get("content") or "")
        if isinstance(raw.get("feedback"), dict) and raw["feedback"].get("rating"):
            message.feedback = Feedback(rating=raw["feedback"]["rating"])
        for wire, field in _HISTORY_FIELDS.items():
            if raw.get(wire):
                setattr(message, field, raw[wire])
        if raw.get("artifacts"):
            message.artifacts = self.resolve_artifacts(raw["artifacts"])
        if raw.get("fileUploads"):
            uploads = [FileUpload.model_validate(f) for f in loads_json(raw["fileUploads"]) or []]
            for upload in uploads:
                if upload.type == STORED_FILE:
                    upload.data = self.api.upload_file_url(self.flow_id, self.chat_id, upload.name)
            message.file_uploads = uploads
        if raw.get("followUpPrompts"):
            message.follow_up_prompts = parse_follow_up_prompts(raw["followUpPrompts"])
        execution = raw.get("execution") or {}
        if message.role == MessageRole.ASSISTANT and execution.get("executionData"):
            message.agent_flow_executed_data = loads_json(execution["executionData"])
        return message

    def _restore_executions(self, executions: list[dict[str, Any]]) -> None:
        if not executions:
            return
        session_id = executions[0].get("sessionId")
        if session_id:
            self.chat_id = session_id
        self.transcript.extend(
            Message(id=e.get("id"), role=MessageRole.ASSISTANT, agent_flow=loads_json(e.get("executionData")))
            for e in executions
        )
        self.persist()

    # -- correlation --

    def persist(self, lead: Optional[dict[str, Any]] = None) -> None:
        self.store.set_flow(self.flow_id, self.chat_id, lead)

    def set_chat_id(self, chat_id: str) -> None:
        if chat_id != self.chat_id:
            logger.debug("Chat id for flow %s reassigned to %s", self.flow_id, chat_id)
            self.chat_id = chat_id
            self.persist()

    def resolve_artifacts(self, artifacts: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Point stored image artifacts at the file download endpoint."""
        resolved = copy.deepcopy(artifacts)
        for artifact in resolved:
            if artifact.get("type") in IMAGE_ARTIFACT_TYPES and isinstance(artifact.get("data"), str):
                artifact["data"] = self.api.upload_file_url(self.flow_id, self.chat_id, artifact["data"])
        return resolved

    def set_follow_up_prompts(self, prompts: list[str]) -> None:
        self.follow_up_prompts = prompts
        self.observer.on_follow_up_prompts(prompts)

    def notify_transcript(self) -> None:
        self.observer.on_transcript_changed(self.transcript.snapshot())

    # -- input state --

    @property
    def lead_saved(self) -> bool:
        return bool(self.lead)

    @property
    def lead_email(self) -> Optional[str]:
        return (self.lead or {}).get("email") or None

    @property
    def input_disabled(self) -> bool:
        return (
            self.loading
            or self.stopping
            or (self.config.leads_required and not self.lead_saved)
            or self.transcript.get_tail().has_pending_action
        )

    def recall_previous(self) -> str:
        self.input_text = self.input_history.previous(self.input_text)
        return self.input_text

    def recall_next(self) -> str:
        self.input_text = self.input_history.next(self.input_text)
        return self.input_text

    # -- attachments --

    async def add_files(self, files: Iterable[Union[LocalFile, str]]) -> list[Attachment]:
        """Stage a selection or drop. A single rejected file discards the whole batch."""
        batch = [f if isinstance(f, LocalFile) else LocalFile.from_path(f) for f in files]
        try:
            drafts = await self.pipeline.stage(batch, self.constraints, self.config.full_file_upload.status)
        except AttachmentRejectedError as e:
            logger.info("Rejected attachment batch: %s", e.file_name)
            self.observer.on_warning(str(e))
            return []
        self.drafts.extend(drafts)
        return drafts

    def add_fragment(self, mime_type: str, text: str) -> Optional[Attachment]:
        draft = encode_fragment(mime_type, text)
        if draft is not None:
            self.drafts.append(draft)
        return draft

    def remove_draft(self, draft: Attachment) -> None:
        self.drafts = [d for d in self.drafts if d is not draft]

    def clear_drafts(self) -> None:
        self.drafts = []

    # -- turns --

    async def submit(self, text: Optional[str] = None, **kwargs: Any) -> bool:
        return await self.lifecycle.submit(text, **kwargs)

    async def submit_form(self, values: dict[str, Any]) -> bool:
        return await self.lifecycle.submit(form=values)

    async def submit_recording(self, content: bytes, mime: str) -> bool:
        """Recorded audio is sent straight away; the server transcribes the question."""
        self.drafts.append(encode_recording(content, mime))
        return await self.lifecycle.submit("")

    async def click_prompt(self, prompt: str) -> bool:
        return await self.lifecycle.submit(prompt)

    async def click_follow_up(self, prompt: str) -> bool:
        self.set_follow_up_prompts([])
        return await self.lifecycle.submit(prompt)

    async def click_action(self, element: dict[str, Any], action: dict[str, Any]) -> bool:
        return await self.lifecycle.click_action(element, action)

    async def confirm_action_feedback(self, feedback: str) -> bool:
        return await self.lifecycle.confirm_action_feedback(feedback)

    def dismiss_action_feedback(self) -> None:
        self.lifecycle.dismiss_action_feedback()

    async def cancel(self) -> bool:
        return await self.lifecycle.cancel()

    # -- feedback & leads --

    async def rate(self, message_id: str, rating: str) -> str:
        """Rate an assistant message. Returns the feedback id for a follow-up comment."""
        result = await self.api.add_feedback(self.flow_id, self.chat_id, message_id, rating)
        self.transcript.update_where(lambda m: m.id == message_id, lambda m: setattr(m, "feedback", Feedback(rating=rating)))
        self.notify_transcript()
        if isinstance(result, dict):
            return str(result.get("id") or "")
        return str(result or "")

    async def submit_feedback_content(self, feedback_id: str, content: str) -> None:
        await self.api.update_feedback(feedback_id, content)

    async def submit_lead(self, name: Optional[str] = None, email: Optional[str] = None, phone: Optional[str] = None) -> None:
        result = await self.api.add_lead(self.flow_id, self.chat_id, name, email, phone)
        if isinstance(result, dict) and result.get("chatId"):
            self.chat_id = result["chatId"]
        self.lead = {"name": name, "email": email, "phone": phone}
        self.persist(lead=self.lead)
        success = (self.config.leads.success_message if self.config.leads else None) or LEAD_SAVED_MESSAGE
        if self.transcript.get_tail().role == MessageRole.LEAD_CAPTURE:
            self.transcript.mutate_tail(lambda m: setattr(m, "text", success))
        self.notify_transcript()

