"""Session open/restore, feedback, lead capture and local state."""

import json

import pytest

from chatflow import JsonFileStateStore, MemoryStateStore, Rating
from chatflow.errors import InputDisabledError, SessionError
from chatflow.models.message import MessageRole
from chatflow.transcript import GREETING

from conftest import FLOW_ID

HISTORY = [
    {"id": "u1", "role": "userMessage", "content": "Draw a chart", "chatId": "restored-chat",
     "fileUploads": json.dumps([{"type": "stored-file", "name": "data.csv", "mime": "text/csv", "data": ""}])},
    {"id": "a1", "role": "apiMessage", "content": "Here it is", "chatId": "restored-chat",
     "artifacts": [{"type": "png", "data": "FILE-STORAGE::chart.png"}],
     "sourceDocuments": [{"pageContent": "row"}],
     "followUpPrompts": json.dumps(["Make it blue"]),
     "feedback": {"rating": "THUMBS_UP", "content": ""},
     "execution": {"executionData": json.dumps([{"nodeId": "llm"}])}},
]

AGENTFLOW = {
    "flowData": json.dumps({"nodes": [{"data": {
        "name": "startAgentflow",
        "inputs": {
            "startInputType": "formInput",
            "formTitle": "Trip",
            "formDescription": "Where to?",
            "formInputTypes": [
                {"type": "string", "label": "City", "name": "city"},
                {"type": "options", "label": "Class", "name": "class",
                 "addOptions": [{"option": "economy"}, {"option": "business"}]},
            ],
        },
    }}]}),
    "chatbotConfig": json.dumps({
        "starterPrompts": {"0": {"prompt": "Plan a trip"}, "1": {"prompt": ""}},
        "chatFeedback": {"status": True},
        "followUpPrompts": {"status": True},
    }),
}


class TestOpen:
    @pytest.mark.asyncio
    async def test_reads_capabilities_concurrently(self, client, backend):
        backend.streaming = True
        backend.constraints = {"isSpeechToTextEnabled": True}
        session = await client.open_session(FLOW_ID)
        paths = sorted(c.path for c in backend.calls)
        assert paths == sorted([
            f"/chatflows-streaming/{FLOW_ID}",
            f"/chatflows-uploads/{FLOW_ID}",
            f"/chatflows/{FLOW_ID}",
            f"/internal-chatmessage/{FLOW_ID}",
        ])
        assert session.is_streaming
        assert session.constraints.is_speech_to_text_enabled
        assert session.opened

    @pytest.mark.asyncio
    async def test_fresh_session_gets_uuid_chat_id(self, client, store):
        session = await client.open_session(FLOW_ID)
        assert len(session.chat_id) == 36
        assert [m.text for m in session.transcript] == [GREETING]
        assert store.get_flow(FLOW_ID) == {}

    @pytest.mark.asyncio
    async def test_saved_chat_id_reused(self, client, store):
        store.set_flow(FLOW_ID, "saved-chat")
        session = await client.open_session(FLOW_ID)
        assert session.chat_id == "saved-chat"

    @pytest.mark.asyncio
    async def test_restores_history(self, client, backend, store, observer):
        backend.history = HISTORY
        backend.chatflow = {"chatbotConfig": json.dumps({"followUpPrompts": {"status": True}})}
        session = await client.open_session(FLOW_ID, observer=observer)

        messages = session.transcript.snapshot()
        assert [m.text for m in messages] == [GREETING, "Draw a chart", "Here it is"]
        assert session.chat_id == "restored-chat"
        assert store.get_flow(FLOW_ID)["chatId"] == "restored-chat"

        user, reply = messages[1], messages[2]
        assert user.role == MessageRole.USER
        assert user.file_uploads[0].data.endswith("fileName=data.csv")
        assert "chatId=restored-chat" in user.file_uploads[0].data
        assert reply.artifacts[0]["data"].endswith("fileName=chart.png")
        assert reply.source_documents == [{"pageContent": "row"}]
        assert reply.feedback.rating == Rating.THUMBS_UP
        assert reply.agent_flow_executed_data == [{"nodeId": "llm"}]
        assert reply.follow_up_prompts == ["Make it blue"]
        assert session.follow_up_prompts == ["Make it blue"]
        assert observer.snapshots[-1] == messages

    @pytest.mark.asyncio
    async def test_unparseable_history_fields_are_dropped(self, client, backend):
        backend.history = [
            {"id": "u1", "role": "userMessage", "content": "hi", "fileUploads": "[not json"},
            {"id": "a1", "role": "apiMessage", "content": "hello", "execution": {"executionData": "{oops"}},
        ]
        session = await client.open_session(FLOW_ID)
        user, reply = session.transcript.snapshot()[1:]
        assert user.file_uploads == []
        assert reply.agent_flow_executed_data is None
        assert reply.text == "hello"

    @pytest.mark.asyncio
    async def test_agentflow_start_form_and_executions(self, client, backend):
        backend.chatflow = AGENTFLOW
        backend.executions = [
            {"id": "exec-1", "sessionId": "exec-chat", "executionData": json.dumps([{"nodeId": "start"}])},
        ]
        session = await client.open_session(FLOW_ID)

        cfg = session.config
        assert cfg.has_start_node
        assert cfg.start_input_type == "formInput"
        assert cfg.start_form.title == "Trip"
        assert cfg.start_form.inputs[1]["options"] == [
            {"label": "economy", "name": "economy"},
            {"label": "business", "name": "business"},
        ]
        assert cfg.starter_prompts == ["Plan a trip"]
        assert cfg.chat_feedback_enabled
        assert cfg.follow_up_prompts_enabled

        tail = session.transcript.get_tail()
        assert tail.id == "exec-1"
        assert tail.agent_flow == [{"nodeId": "start"}]
        assert session.chat_id == "exec-chat"
        assert backend.calls_to("/executions")[0].params == {"agentflowId": FLOW_ID}

    @pytest.mark.asyncio
    async def test_open_failure_raises_session_error(self, client, backend):
        backend.fail("/chatflows-uploads/", 404, "Chatflow not found")
        with pytest.raises(SessionError) as exc:
            await client.open_session(FLOW_ID)
        assert FLOW_ID in str(exc.value)

    @pytest.mark.asyncio
    async def test_close_resets(self, client, backend):
        session = await client.open_session(FLOW_ID)
        await session.submit("Hello")
        session.input_text = "draft"
        await session.close()
        assert [m.text for m in session.transcript] == [GREETING]
        assert session.input_text == ""
        assert not session.opened


class TestFeedback:
    @pytest.mark.asyncio
    async def test_rate_then_comment(self, client, backend):
        session = await client.open_session(FLOW_ID)
        await session.submit("Hello")

        feedback_id = await session.rate("msg-1", Rating.THUMBS_DOWN)

        assert feedback_id == "fb-1"
        post = backend.calls_to("/feedback/", "POST")[0]
        assert post.path == f"/feedback/{FLOW_ID}"
        assert post.body == {
            "chatflowid": FLOW_ID,
            "chatId": session.chat_id,
            "messageId": "msg-1",
            "rating": "THUMBS_DOWN",
            "content": "",
        }
        assert session.transcript.find("msg-1").feedback.rating == Rating.THUMBS_DOWN

        await session.submit_feedback_content(feedback_id, "too vague")
        put = backend.calls_to("/feedback/", "PUT")[0]
        assert put.path == "/feedback/fb-1"
        assert put.body == {"content": "too vague"}

    @pytest.mark.asyncio
    async def test_bare_id_reply(self, client, backend):
        backend.reply("/feedback/", "fb-9")
        session = await client.open_session(FLOW_ID)
        await session.submit("Hello")
        assert await session.rate("msg-1", Rating.THUMBS_UP) == "fb-9"
        assert session.transcript.find("msg-1").feedback.rating == Rating.THUMBS_UP


class TestLeads:
    @pytest.mark.asyncio
    async def test_lead_capture_gates_input(self, client, backend, store):
        backend.chatflow = {"chatbotConfig": json.dumps({
            "leads": {"status": True, "title": "Say hi", "email": True, "successMessage": "Thanks!"},
        })}
        backend.lead_chat_id = "lead-chat"
        session = await client.open_session(FLOW_ID)

        assert session.transcript.get_tail().role == MessageRole.LEAD_CAPTURE
        assert session.input_disabled
        with pytest.raises(InputDisabledError):
            await session.submit("hi")

        await session.submit_lead(name="Ada", email="ada@example.com")

        assert backend.calls_to("/leads")[0].body["email"] == "ada@example.com"
        assert session.chat_id == "lead-chat"
        assert session.transcript.get_tail().text == "Thanks!"
        assert store.get_flow(FLOW_ID) == {
            "chatId": "lead-chat",
            "lead": {"name": "Ada", "email": "ada@example.com", "phone": None},
        }
        assert not session.input_disabled

        await session.submit("hi")
        assert backend.prediction_calls[0].body["leadEmail"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_non_object_lead_reply_keeps_chat_id(self, client, backend, store):
        backend.chatflow = {"chatbotConfig": json.dumps({"leads": {"status": True}})}
        backend.reply("/leads", "ok")
        session = await client.open_session(FLOW_ID)
        chat_id = session.chat_id

        await session.submit_lead(email="ada@example.com")

        assert session.chat_id == chat_id
        assert store.get_flow(FLOW_ID)["lead"]["email"] == "ada@example.com"
        assert not session.input_disabled

    @pytest.mark.asyncio
    async def test_saved_lead_skips_capture(self, client, backend, store):
        backend.chatflow = {"chatbotConfig": json.dumps({"leads": {"status": True}})}
        store.set_flow(FLOW_ID, "old-chat", lead={"email": "ada@example.com"})
        session = await client.open_session(FLOW_ID)
        assert session.transcript.get_tail().role == MessageRole.ASSISTANT
        assert session.lead_email == "ada@example.com"


class TestRecall:
    @pytest.mark.asyncio
    async def test_recall_previous_submissions(self, client):
        session = await client.open_session(FLOW_ID)
        await session.submit("first")
        await session.submit("second")
        session.input_text = "new"
        assert session.recall_previous() == "second"
        assert session.recall_previous() == "first"
        assert session.recall_next() == "second"
        assert session.recall_next() == "new"


class TestStateStores:
    def test_memory_store_merges(self):
        store = MemoryStateStore()
        store.set_flow("f", "c1", lead={"email": "a@b.c"})
        store.set_flow("f", "c2")
        assert store.get_flow("f") == {"chatId": "c2", "lead": {"email": "a@b.c"}}
        store.remove_flow("f")
        assert store.get_flow("f") == {}

    def test_json_store_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        JsonFileStateStore(path).set_flow("f", "c1")
        assert JsonFileStateStore(path).get_flow("f") == {"chatId": "c1"}
        assert json.loads(path.read_text()) == {"f": {"chatId": "c1"}}

    def test_json_store_ignores_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{oops")
        store = JsonFileStateStore(path)
        assert store.get_flow("f") == {}
        store.set_flow("f", "c1")
        assert store.get_flow("f") == {"chatId": "c1"}
