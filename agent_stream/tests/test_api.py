import tempfile
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from agent_stream.api.app import create_app
from agent_stream.api.auth import TokenAuth
from agent_stream.api.service import ChatService, build_default_service
from agent_stream.config.settings import AgentSettings
from agent_stream.client.api_client import ChatApiClient
from agent_stream.client.consumer import StreamConsumer
from agent_stream.client.sse_parser import SSEParser
from agent_stream.domain.exceptions import AuthError
from agent_stream.flows.adapters import TokenFragment, ToolCallRequest
from agent_stream.flows.engine import AgentConfig, AgentGraph
from agent_stream.infrastructure.storage.checkpoint import MemoryCheckpointStore
from agent_stream.infrastructure.storage.json_store import JsonConversationStore
from agent_stream.tools.definitions import ToolCall
from agent_stream.tools.registry import ToolRegistry

TOKEN = "tok-u1"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class ScriptedModel:
    def __init__(self, *scripts):
        self._scripts = list(scripts)
        self.prompts = []

    def invoke(self, messages, allow_tools=True):
        self.prompts.append(list(messages))
        for item in self._scripts.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


def _weather_tools():
    registry = ToolRegistry()

    @registry.tool(description="Current weather for a city")
    def get_weather(city):
        return "22C"

    return registry


def _weather_model():
    return ScriptedModel(
        [ToolCallRequest(ToolCall(id="call_1", name="get_weather", arguments={"city": "Paris"}))],
        [TokenFragment("It is "), TokenFragment("22C in Paris.")],
    )


@pytest.fixture
def storage_root():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d) / ".storage"


def _make_client(storage_root, model):
    store = JsonConversationStore(root=storage_root)
    graph = AgentGraph(
        model,
        tools=_weather_tools(),
        checkpoints=MemoryCheckpointStore(),
        config=AgentConfig(system_prompt="You are helpful.", cache_hints=True),
    )
    app = create_app(service=ChatService(store, graph), auth=TokenAuth({TOKEN: "u1"}))
    return TestClient(app)


def test_requests_without_token_are_rejected(storage_root):
    client = _make_client(storage_root, _weather_model())
    resp = client.get("/api/chats")
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"

    resp = client.post("/api/chat/stream", json={"messages": [], "newMessage": "hi", "chatId": "c1"})
    assert resp.status_code == 401

    resp = client.get("/api/chats", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401


def test_empty_message_is_rejected_before_streaming(storage_root):
    client = _make_client(storage_root, _weather_model())
    chat = client.post("/api/chats", json={"title": "t"}, headers=AUTH).json()

    resp = client.post(
        "/api/chat/stream",
        json={"messages": [], "newMessage": "   ", "chatId": chat["id"]},
        headers=AUTH,
    )
    assert resp.status_code == 422
    assert client.get(f"/api/chats/{chat['id']}/messages", headers=AUTH).json() == []


def test_unknown_chat_is_404(storage_root):
    client = _make_client(storage_root, _weather_model())
    resp = client.post(
        "/api/chat/stream",
        json={"messages": [], "newMessage": "hi", "chatId": "c-missing"},
        headers=AUTH,
    )
    assert resp.status_code == 404


def test_stream_frames_and_headers(storage_root):
    client = _make_client(storage_root, _weather_model())
    chat = client.post("/api/chats", json={"title": "weather"}, headers=AUTH).json()

    with client.stream(
        "POST",
        "/api/chat/stream",
        json={"messages": [], "newMessage": "What's the weather in Paris?", "chatId": chat["id"]},
        headers=AUTH,
    ) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["x-accel-buffering"] == "no"
        assert resp.headers["cache-control"] == "no-cache"
        parser = SSEParser()
        events = []
        for chunk in resp.iter_bytes():
            events.extend(parser.parse(chunk))
        events.extend(parser.finish())

    assert [e.type.value for e in events] == [
        "connected",
        "tool_start",
        "tool_end",
        "token",
        "token",
        "done",
    ]
    assert events[1].input == {"city": "Paris"}
    assert events[2].output == "22C"


class RecordingConsumer(StreamConsumer):
    def __init__(self, *a, **kw):
        super().__init__(*a, **kw)
        self.seen = []

    def handle(self, event):
        self.seen.append(event.type.value)
        super().handle(event)


def test_end_to_end_weather_run(storage_root):
    model = _weather_model()
    api = ChatApiClient("", token=TOKEN, http_client=_make_client(storage_root, model))
    chat = api.create_chat("weather")
    history = [api.append_message(chat.id, "user", "hi")]
    consumer = RecordingConsumer(chat.id, api, initial_messages=history)

    state = api.stream_chat(chat.id, "What's the weather in Paris?", history=history, consumer=consumer)

    assert consumer.seen == ["connected", "tool_start", "tool_end", "token", "token", "done"]
    assert state.finished
    assert state.error is None
    assert state.messages[-1].content == "It is 22C in Paris."
    assert [m.content for m in model.prompts[0] if m.role == "user"] == ["hi", "What's the weather in Paris?"]
    stored = api.list_messages(chat.id)
    assert [(m.role, m.content) for m in stored] == [
        ("user", "hi"),
        ("user", "What's the weather in Paris?"),
        ("assistant", "It is 22C in Paris."),
    ]


def test_model_failure_arrives_as_error_frame(storage_root):
    model = ScriptedModel([TokenFragment("par"), RuntimeError("upstream reset")])
    api = ChatApiClient("", token=TOKEN, http_client=_make_client(storage_root, model))
    chat = api.create_chat()

    state = api.stream_chat(chat.id, "hi")

    assert state.finished
    assert "upstream reset" in state.error
    assert state.messages == []
    assert [m.role for m in api.list_messages(chat.id)] == ["user"]


def test_chat_management(storage_root):
    api = ChatApiClient("", token=TOKEN, http_client=_make_client(storage_root, _weather_model()))
    a = api.create_chat("first")
    b = api.create_chat("second")
    assert {c.id for c in api.list_chats()} == {a.id, b.id}

    api.delete_chat(a.id)
    assert [c.id for c in api.list_chats()] == [b.id]

    other = ChatApiClient("", token="nope", http_client=_make_client(storage_root, _weather_model()))
    with pytest.raises(AuthError):
        other.list_chats()


def test_default_service_builds_with_unreachable_tool_endpoint(storage_root, monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def get(self, url, **_):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.Client", Client)
    cfg = AgentSettings(tool_endpoint="http://tools.invalid", storage_root=str(storage_root), checkpoint_backend="memory")

    app = create_app(service=build_default_service(cfg), auth=TokenAuth({TOKEN: "u1"}))

    assert isinstance(app.state.service, ChatService)
