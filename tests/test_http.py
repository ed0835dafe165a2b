"""Tests for SSE framing and the HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from conftest import call, text
from loom import __version__
from loom.http.framing import (
    DONE_FRAME,
    decode_frames,
    encode_frame,
    iter_frames,
    parse_frame,
)
from loom.llm.core import TurnOrchestrator
from loom.main import create_app
from loom.providers.base import ProviderError
from loom.session.models import ChatMessage, Conversation, Role

SETTINGS = {"provider": "openai", "model": "gpt-4o", "api_key": "sk-test"}


# ─── Framing ──────────────────────────────────────────────────


def test_encode_frame():
    assert encode_frame({"content": "Hi"}) == 'data: {"content": "Hi"}\n\n'
    assert DONE_FRAME == "data: [DONE]\n\n"


def test_parse_frame_ignores_non_data_lines():
    assert parse_frame('data: {"a": 1}') == {"a": 1}
    assert parse_frame(": keep-alive") is None
    assert parse_frame("") is None
    assert parse_frame("data: [1, 2]") is None


def test_decode_frames_skips_malformed_and_stops_at_done():
    body = (
        encode_frame({"content": "a"})
        + "data: {broken\n\n"
        + encode_frame({"content": "b"})
        + DONE_FRAME
        + encode_frame({"content": "after"})
    )
    assert list(decode_frames(body)) == [{"content": "a"}, {"content": "b"}]


@pytest.mark.asyncio
async def test_iter_frames_over_async_lines():
    async def lines():
        for line in ['data: {"n": 1}', "", "data: nope", 'data: {"n": 2}', "data: [DONE]"]:
            yield line

    assert [frame async for frame in iter_frames(lines())] == [{"n": 1}, {"n": 2}]


# ─── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def app_for(scripted):
    """app_for(rounds) → (TestClient, adapter holder)."""

    def make(rounds):
        factory, holder = scripted(rounds)
        orchestrator = TurnOrchestrator(adapter_factory=factory)
        return TestClient(create_app(orchestrator)), holder

    return make


def _turn_body(conversation, **extra):
    body = {"conversation": conversation.to_dict(), "settings": SETTINGS}
    body.update(extra)
    return body


# ─── Service endpoints ────────────────────────────────────────


def test_health(app_for):
    client, _ = app_for([[text("unused")]])
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["version"] == __version__
    assert "anthropic" in data["providers"]
    assert "web_search" in data["tools"]


def test_metrics_endpoint(app_for):
    client, _ = app_for([[text("unused")]])
    data = client.get("/metrics").json()
    assert set(data) == {"uptime_seconds", "counters", "gauges", "histograms"}


# ─── Turns ────────────────────────────────────────────────────


def test_send_streams_turn_events(app_for):
    client, holder = app_for([[text("Hi "), text("there")]])
    conversation = Conversation(id="c1")

    response = client.post("/v1/turns", json=_turn_body(conversation, content="Hello"))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-accel-buffering"] == "no"
    assert response.text.endswith(DONE_FRAME)

    frames = list(decode_frames(response.text))
    assert [f["type"] for f in frames] == ["content", "content", "done"]
    assert frames[-1]["phase"] == "done"
    assert frames[-1]["message"]["content"] == "Hi there"
    assert holder["adapter"].records[0].message_count == 1


def test_send_requires_content(app_for):
    client, _ = app_for([[text("unused")]])
    response = client.post("/v1/turns", json=_turn_body(Conversation(id="c1")))
    assert response.status_code == 400
    assert response.json() == {"error": "content is required"}


def test_edit_unknown_message(app_for, conversation):
    client, _ = app_for([[text("unused")]])
    response = client.post(
        "/v1/turns",
        json=_turn_body(conversation, edit_message_id="missing", content="x"),
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Message not found: missing"}


def test_regenerate_without_user_message(app_for):
    client, _ = app_for([[text("unused")]])
    response = client.post(
        "/v1/turns", json=_turn_body(Conversation(id="c1"), regenerate=True)
    )
    assert response.status_code == 400
    assert response.json()["error"].startswith("Nothing to regenerate")


def test_regenerate_replays_from_last_user_message(app_for):
    client, holder = app_for([[text("Second try")]])
    conversation = Conversation(
        id="c1",
        messages=(
            ChatMessage(role=Role.USER, content="Tell me a joke"),
            ChatMessage(role=Role.ASSISTANT, content="First try"),
        ),
    )

    response = client.post("/v1/turns", json=_turn_body(conversation, regenerate=True))

    frames = list(decode_frames(response.text))
    assert frames[-1]["message"]["content"] == "Second try"
    assert holder["adapter"].records[0].message_count == 1


def test_unknown_provider_ends_with_error_frame():
    client = TestClient(create_app(TurnOrchestrator()))
    body = _turn_body(Conversation(id="c1"), content="hi")
    body["settings"] = {"provider": "nope"}

    frames = list(decode_frames(client.post("/v1/turns", json=body).text))

    assert [f["type"] for f in frames] == ["error", "done"]
    assert frames[0]["error"] == "Unknown LLM provider: nope"
    assert frames[1]["phase"] == "error"
    assert frames[1]["message"]["content"] == "Error: Unknown LLM provider: nope"


def test_abort_without_running_turn(app_for):
    client, _ = app_for([[text("unused")]])
    response = client.post("/v1/turns/c1/abort")
    assert response.status_code == 404
    assert response.json() == {"error": "No running turn", "conversation_id": "c1"}


# ─── Single round ─────────────────────────────────────────────


def test_chat_stream_relays_chunks(app_for):
    client, holder = app_for([[text("Let me check"), call("web_search", "c1", query="x")]])
    body = {
        "settings": {**SETTINGS, "web_search_enabled": True, "artifacts_enabled": False},
        "messages": [{"role": "user", "content": "news?"}],
        "system_prompt": "Be brief.",
    }

    response = client.post("/v1/chat/stream", json=body)

    frames = list(decode_frames(response.text))
    assert frames[0] == {"content": "Let me check"}
    assert frames[1]["tool_call"]["name"] == "web_search"
    assert response.text.endswith(DONE_FRAME)

    record = holder["adapter"].records[0]
    assert record.system_prompt == "Be brief."
    assert record.tool_names == ["web_search"]


def test_chat_stream_drops_tools_at_their_limit(app_for):
    client, holder = app_for([[text("ok")]])
    body = {
        "settings": {**SETTINGS, "web_search_enabled": True, "artifacts_enabled": False},
        "messages": [{"role": "user", "content": "news?"}],
        "call_counts": {"web_search": 3},
    }

    client.post("/v1/chat/stream", json=body)

    assert holder["adapter"].records[0].tool_names == []


def test_chat_stream_provider_error_frame(app_for):
    client, _ = app_for([[text("partial"), ProviderError("upstream 500")]])
    body = {"settings": SETTINGS, "messages": [{"role": "user", "content": "hi"}]}

    frames = list(decode_frames(client.post("/v1/chat/stream", json=body).text))

    assert frames == [{"content": "partial"}, {"error": "upstream 500"}]


def test_chat_stream_validation():
    client = TestClient(create_app(TurnOrchestrator()))

    unknown = client.post(
        "/v1/chat/stream",
        json={"settings": {"provider": "nope"}, "messages": [{"role": "user", "content": "x"}]},
    )
    assert unknown.status_code == 400
    assert unknown.json() == {"error": "Unknown LLM provider: nope"}

    empty = client.post("/v1/chat/stream", json={"settings": SETTINGS, "messages": []})
    assert empty.status_code == 400
    assert empty.json() == {"error": "messages is required"}
