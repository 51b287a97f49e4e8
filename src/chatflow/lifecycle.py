"""
Request lifecycle — one turn from submit to terminal event.

Checks preconditions, runs the attachment uploads, builds the single request
payload, then either consumes the prediction stream through the reducer or
folds one synchronous response. Cancellation asks the backend to stop and
lets the stream end on its own `abort` event.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from chatflow.errors import ChatflowError, HttpError, InputDisabledError, TurnInProgressError, UploadError
from chatflow.models.attachment import Attachment
from chatflow.models.message import Message
from chatflow.reducer import GENERIC_ERROR, EventStreamReducer, Turn, clean_error_message
from chatflow.transport.sse import EventStream

if TYPE_CHECKING:
    from chatflow.session import ChatSession

logger = logging.getLogger(__name__)

AGENTFLOW_ELEMENT = "agentflowv2"
PROCEED = "proceed"
REJECT = "reject"


class PendingAction:
    """Action reply held until its written-feedback dialog is confirmed."""
    __slots__ = ("kind", "data")

    def __init__(self, kind: str, data: dict[str, Any]):
        self.kind = kind
        self.data = data

    def __repr__(self) -> str:
        return f"PendingAction(kind={self.kind!r}, node={self.data.get('nodeId')!r})"


def can_submit(text: str, drafts: list[Attachment]) -> bool:
    if text.strip():
        return True
    return bool(drafts) and not any(d.needs_caption for d in drafts)


def needs_feedback(element: dict[str, Any], action: dict[str, Any]) -> bool:
    """Whether answering `element` first asks the user for written feedback."""
    if AGENTFLOW_ELEMENT not in (element.get("type") or ""):
        return False
    return bool(((action.get("data") or {}).get("input") or {}).get("humanInputEnableFeedback"))


def flatten_form(values: dict[str, Any]) -> str:
    return "\n".join(f"{key}: {value}" for key, value in values.items())


class RequestLifecycle:
    def __init__(self, session: "ChatSession"):
        self._session = session
        self.reducer = EventStreamReducer(session)
        self.turn: Optional[Turn] = None
        self.pending_action: Optional[PendingAction] = None
        self._stream: Optional[EventStream] = None

    @property
    def active(self) -> bool:
        return self.turn is not None

    # -- submission --

    async def submit(
        self,
        text: Optional[str] = None,
        *,
        form: Optional[dict[str, Any]] = None,
        action: Optional[dict[str, Any]] = None,
        human_input: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Run one turn. Returns False when there is nothing to send.

        `text` defaults to the session's typed input. Raises TurnInProgressError
        while another turn is in flight and InputDisabledError while the input
        is locked by lead capture or an unanswered action.
        """
        s = self._session
        if self.active or s.loading or s.stopping:
            raise TurnInProgressError()
        if s.config.leads_required and not s.lead_saved:
            raise InputDisabledError("Contact details must be submitted before chatting")
        if action is None and human_input is None and s.transcript.get_tail().has_pending_action:
            raise InputDisabledError("Answer the pending action before sending a new message")

        if form is not None:
            input_text = flatten_form(form)
        else:
            input_text = s.input_text if text is None else text
            if not can_submit(input_text, s.drafts):
                return False
            if input_text.strip():
                s.input_history.add(input_text)

        s.loading = True
        s.observer.on_node_status_cleared()
        preserve_input = False
        try:
            try:
                drafts = await s.pipeline.upload(
                    s.drafts,
                    flow_id=s.flow_id,
                    chat_id=s.chat_id,
                    full_file_upload=s.config.full_file_upload.status,
                    rag_upload_allowed=s.constraints.is_rag_file_upload_allowed,
                )
            except UploadError as e:
                s.transcript.append(Message.assistant(str(e)))
                s.notify_transcript()
                preserve_input = True
                return True

            uploads = [d.to_upload() for d in drafts]
            s.drafts = []
            turn = Turn(input_text)
            turn.user_handle = s.transcript.append(Message.user(input_text, uploads or None))
            self.turn = turn
            s.notify_transcript()

            payload: dict[str, Any] = {"question": input_text, "chatId": s.chat_id}
            if form is not None:
                del payload["question"]
                payload["form"] = form
            if uploads:
                payload["uploads"] = [u.model_dump() for u in uploads]
            if s.lead_email:
                payload["leadEmail"] = s.lead_email
            if action is not None:
                payload["action"] = action
            if human_input is not None:
                payload["humanInput"] = human_input

            logger.debug("Submitting turn for flow %s (streaming=%s)", s.flow_id, s.is_streaming)
            if s.is_streaming:
                await self._run_stream(turn, payload)
            else:
                await self._run_sync(turn, payload)
            return True
        finally:
            self._reset(preserve_input)

    async def _run_stream(self, turn: Turn, payload: dict[str, Any]) -> None:
        stream = self._session.api.prediction_stream(self._session.flow_id, payload)
        self._stream = stream
        try:
            async with stream:
                async for event in stream:
                    if self.reducer.apply(turn, event):
                        break
        except HttpError as e:
            self._append_error(e.server_message)
        except (ChatflowError, httpx.HTTPError) as e:
            if stream.torn_down:
                logger.debug("Stream for flow %s torn down mid-turn", self._session.flow_id)
            else:
                logger.error("Prediction stream failed for flow %s: %s", self._session.flow_id, e)
                self._append_error(None)
        finally:
            self._stream = None
        if not turn.done and not stream.torn_down:
            logger.info("Prediction stream for flow %s closed without a terminal event", self._session.flow_id)

    async def _run_sync(self, turn: Turn, payload: dict[str, Any]) -> None:
        s = self._session
        try:
            data = await s.api.predict(s.flow_id, payload)
        except HttpError as e:
            self._append_error(e.server_message)
        except ChatflowError as e:
            logger.error("Prediction failed for flow %s: %s", s.flow_id, e)
            self._append_error(None)
        else:
            self.reducer.fold_response(turn, data)
        if s.stopping:
            self.reducer.apply_abort(turn)

    def _append_error(self, message: Optional[str]) -> None:
        self._session.transcript.append(Message.assistant(clean_error_message(message)))
        self._session.notify_transcript()

    def _reset(self, preserve_input: bool) -> None:
        s = self._session
        self.turn = None
        s.loading = False
        s.stopping = False
        s.drafts = []
        if not preserve_input:
            s.input_text = ""
        s.observer.focus_input()
        s.observer.scroll_to_latest()

    # -- cancellation --

    async def cancel(self) -> bool:
        """Ask the backend to stop the active turn. False if there is nothing to stop."""
        s = self._session
        if not self.active or s.stopping:
            return False
        s.stopping = True
        try:
            await s.api.abort(s.flow_id, s.chat_id)
        except ChatflowError as e:
            s.stopping = False
            message = e.server_message if isinstance(e, HttpError) and e.server_message else str(e)
            logger.warning("Abort request failed for flow %s: %s", s.flow_id, message)
            s.observer.on_warning(message or GENERIC_ERROR)
            return False
        return True

    async def teardown(self) -> None:
        """Close the live stream, if any, without waiting for a terminal event."""
        if self._stream is not None:
            await self._stream.close(teardown=True)

    # -- action replies --

    async def click_action(self, element: dict[str, Any], action: dict[str, Any]) -> bool:
        s = self._session
        if not s.transcript.get_tail().is_user:
            s.transcript.mutate_tail(lambda m: setattr(m, "action", None))
            s.notify_transcript()

        element_type = element.get("type") or ""
        if AGENTFLOW_ELEMENT not in element_type:
            return await self.submit(element.get("label") or "", action=action)

        kind = PROCEED if "approve" in element_type else REJECT
        data = action.get("data") or {}
        if needs_feedback(element, action):
            self.pending_action = PendingAction(kind, data)
            return False
        return await self._respond(kind, data, "")

    async def confirm_action_feedback(self, feedback: str) -> bool:
        pending = self.pending_action
        if pending is None:
            return False
        self.pending_action = None
        return await self._respond(pending.kind, pending.data, feedback)

    def dismiss_action_feedback(self) -> None:
        self.pending_action = None

    async def _respond(self, kind: str, data: dict[str, Any], feedback: str) -> bool:
        question = feedback or kind.capitalize()
        return await self.submit(question, human_input={
            "type": kind,
            "startNodeId": data.get("nodeId"),
            "feedback": feedback,
        })
