import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedProvider, reply
from streamchat.__main__ import app
from streamchat.chat.events import DoneEvent, ErrorEvent, TextDelta
from streamchat.routes.chat import route
from streamchat.streaming.sse import decode_line

API = "/api/v1"


@pytest.fixture
def provider():
    return ScriptedProvider(reply("Hel", "lo"))


@pytest.fixture
def client(sql_store, provider):
    app.dependency_overrides[route.get_store] = lambda: sql_store
    app.dependency_overrides[route.get_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_conversation(client, title="Hello"):
    response = client.post(f"{API}/conversations", json={"title": title})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert "X-Process-Time" in response.headers


def test_create_and_list_conversations(client):
    first = create_conversation(client, "first")
    second = create_conversation(client, "second")

    response = client.get(f"{API}/conversations")
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [second["id"], first["id"]]

    touched = client.patch(f"{API}/conversations/{first['id']}/touch")
    assert touched.status_code == 200
    assert touched.json()["id"] == first["id"]
    assert client.get(f"{API}/conversations").json()[0]["id"] == first["id"]


def test_blank_title_is_rejected(client):
    response = client.post(f"{API}/conversations", json={"title": ""})
    assert response.status_code == 422


def test_messages_roundtrip(client):
    conv = create_conversation(client)
    url = f"{API}/conversations/{conv['id']}/messages"

    created = client.post(url, json={"role": "user", "content": "hi"})
    assert created.status_code == 201
    assert created.json()["sequence_order"] == 1
    client.post(url, json={"role": "assistant", "content": "hello"})

    listed = client.get(url).json()
    assert [(m["role"], m["content"]) for m in listed] == [("user", "hi"), ("assistant", "hello")]

    assert client.delete(f"{API}/messages/{created.json()['id']}").status_code == 204
    assert client.delete(f"{API}/messages/{created.json()['id']}").status_code == 404
    assert [m["content"] for m in client.get(url).json()] == ["hello"]


def test_invalid_message_role(client):
    conv = create_conversation(client)
    response = client.post(
        f"{API}/conversations/{conv['id']}/messages",
        json={"role": "system", "content": "hi"},
    )
    assert response.status_code == 422


def test_missing_conversation_is_404(client):
    assert client.get(f"{API}/conversations/nope/messages").status_code == 404
    assert client.patch(f"{API}/conversations/nope/touch").status_code == 404
    assert client.delete(f"{API}/conversations/nope").status_code == 404
    response = client.post(
        f"{API}/conversations/nope/messages", json={"role": "user", "content": "hi"}
    )
    assert response.status_code == 404


def test_delete_conversation(client):
    conv = create_conversation(client)
    client.post(
        f"{API}/conversations/{conv['id']}/messages", json={"role": "user", "content": "hi"}
    )

    assert client.delete(f"{API}/conversations/{conv['id']}").status_code == 204
    assert client.get(f"{API}/conversations").json() == []
    assert client.get(f"{API}/conversations/{conv['id']}/messages").status_code == 404


def test_chat_stream_relays_events(client, provider, sql_store):
    response = client.post(
        f"{API}/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]}
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = [e for e in map(decode_line, response.text.split("\n")) if e is not None]
    assert events == [TextDelta(delta="Hel"), TextDelta(delta="lo"), DoneEvent(text="Hello")]

    request = provider.requests[0]
    assert request.system == "You are a helpful assistant."
    assert [t.content for t in request.messages] == ["Hi"]
    # relaying never writes to the store
    assert client.get(f"{API}/conversations").json() == []


def test_chat_stream_reports_provider_crash(client, provider):
    class Exploding:
        async def stream(self, request):
            yield TextDelta(delta="x")
            raise RuntimeError("socket closed")

    app.dependency_overrides[route.get_provider] = lambda: Exploding()
    response = client.post(
        f"{API}/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]}
    )

    events = [e for e in map(decode_line, response.text.split("\n")) if e is not None]
    assert events[0] == TextDelta(delta="x")
    assert isinstance(events[-1], ErrorEvent)
    assert "socket closed" in events[-1].message


def test_chat_stream_requires_messages(client):
    response = client.post(f"{API}/chat/stream", json={"messages": []})
    assert response.status_code == 422


def test_chat_stream_without_api_key(sql_store, monkeypatch):
    monkeypatch.setattr(route.config, "gemini_api_key", None)
    app.dependency_overrides[route.get_store] = lambda: sql_store
    try:
        response = TestClient(app).post(
            f"{API}/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]}
        )
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503


def test_chat_stream_forwards_sampling_options(client, provider):
    response = client.post(
        f"{API}/chat/stream",
        json={
            "messages": [{"role": "user", "content": "Hi"}],
            "system": "Be brief.",
            "temperature": 0.2,
            "max_tokens": 64,
        },
    )
    assert response.status_code == 200

    request = provider.requests[0]
    assert request.system == "Be brief."
    assert request.temperature == 0.2
    assert request.max_tokens == 64


def test_chat_stream_rejects_bad_sampling_options(client):
    messages = [{"role": "user", "content": "Hi"}]
    assert client.post(
        f"{API}/chat/stream", json={"messages": messages, "temperature": 3}
    ).status_code == 422
    assert client.post(
        f"{API}/chat/stream", json={"messages": messages, "max_tokens": 0}
    ).status_code == 422


def test_chat_stream_is_not_compressed(client, provider):
    provider.scripts = [reply("x" * 2000)]
    response = client.post(
        f"{API}/chat/stream",
        json={"messages": [{"role": "user", "content": "Hi"}]},
        headers={"Accept-Encoding": "gzip"},
    )
    assert response.status_code == 200
    assert "content-encoding" not in response.headers
    assert response.text.count("x") >= 2000


def test_large_json_responses_are_compressed(client):
    for i in range(30):
        create_conversation(client, f"{i:02d} " + "t" * 100)
    response = client.get(f"{API}/conversations", headers={"Accept-Encoding": "gzip"})
    assert response.status_code == 200
    assert response.headers["content-encoding"] == "gzip"
    assert len(response.json()) == 30
