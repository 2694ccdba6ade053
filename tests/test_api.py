"""HTTP and WebSocket tests for the FastAPI app."""

from dataclasses import replace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from broadcaster import AGENT_MESSAGE_SENT, session_channel
from chat_service import ChatService
from models import IndexedPage, Message, TrustedSite
from settings import Settings

from conftest import FakeOpenAIClient


@pytest.fixture
def fake_client():
    return FakeOpenAIClient(replies=["Our office opens at 9am.", "Second answer."])


@pytest.fixture
def service(settings, broadcaster, fake_client):
    return ChatService(settings=settings, client=fake_client, broadcaster=broadcaster)


@pytest.fixture
def client(service):
    main.app.dependency_overrides[main.get_chat_service] = lambda: service
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


# ------------------------------------------------------------------
# chat
# ------------------------------------------------------------------


def test_chat_acknowledges_and_stores_reply(client):
    response = client.post("/api/chat", json={"message": "When do you open?", "session_id": "sess-api"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["session_id"] == "sess-api"
    assert data["sent_message"]["sender"] == "visitor"
    assert data["sent_message"]["body"] == "When do you open?"

    history = client.get(f"/api/conversation/{data['conversation_id']}").json()
    assert [m["sender"] for m in history["messages"]] == ["visitor", "agent"]
    assert "Our office opens at 9am." in history["messages"][1]["body"]


def test_chat_reuses_conversation_for_session(client):
    first = client.post("/api/chat", json={"message": "One", "session_id": "sess-api"}).json()
    second = client.post("/api/chat", json={"message": "Two", "session_id": "sess-api"}).json()

    assert first["conversation_id"] == second["conversation_id"]
    history = client.get("/api/conversation/session/sess-api").json()
    assert [m["body"] for m in history["messages"] if m["sender"] == "visitor"] == ["One", "Two"]


def test_chat_without_session_generates_one(client):
    data = client.post("/api/chat", json={"message": "Hello"}).json()

    assert len(data["session_id"]) == 36


def test_chat_strips_html(client, db):
    data = client.post("/api/chat", json={"message": "<b>Need</b> help", "session_id": "s"}).json()

    assert data["sent_message"]["body"] == "Need help"


@pytest.mark.parametrize("payload", [
    {"message": "x" * 1001},
    {"message": ""},
    {"message": "<script></script>"},
    {"message": "hi", "session_id": "s" * 256},
])
def test_chat_rejects_invalid_input(client, payload):
    assert client.post("/api/chat", json=payload).status_code == 422


def test_background_mode_replies_after_acknowledging(settings, broadcaster, fake_client, db):
    service = ChatService(
        settings=replace(settings, response_mode="background"), client=fake_client, broadcaster=broadcaster
    )
    main.app.dependency_overrides[main.get_chat_service] = lambda: service
    try:
        data = TestClient(main.app).post("/api/chat", json={"message": "Question", "session_id": "bg"}).json()
    finally:
        main.app.dependency_overrides.clear()

    assert data["message"] == "Message queued for processing."
    bodies = [m.sender for m in db.query(Message).filter(Message.conversation_id == data["conversation_id"])]
    assert sorted(bodies) == ["agent", "visitor"]


def test_stream_endpoint(settings, broadcaster):
    frames = [
        ("thread.message.delta", {"delta": {"content": [{"text": {"value": "Streamed"}}]}}),
        ("thread.run.completed", {}),
    ]
    service = ChatService(settings=settings, client=FakeOpenAIClient(stream_frames=frames), broadcaster=broadcaster)
    main.app.dependency_overrides[main.get_chat_service] = lambda: service
    try:
        response = TestClient(main.app).post("/api/chat/stream", json={"message": "Prices?", "session_id": "st"})
    finally:
        main.app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-session-id"] == "st"
    assert 'data: {"text": "Streamed"}' in response.text
    assert response.text.endswith("event: end\ndata: Stream finished\n\n")


def test_unknown_session_history_is_empty(client):
    assert client.get("/api/conversation/session/nope").json() == {"conversation_id": None, "messages": []}


def test_unknown_conversation_is_404(client):
    assert client.get("/api/conversation/12345").status_code == 404


def test_websocket_receives_session_events(client):
    with client.websocket_connect("/ws/chat-session/sess-ws") as ws:
        main.chat_service.broadcaster.publish(session_channel("sess-ws"), AGENT_MESSAGE_SENT, {"id": 7})
        assert ws.receive_json() == {"event": AGENT_MESSAGE_SENT, "message": {"id": 7}}

    assert main.chat_service.broadcaster.publish(session_channel("sess-ws"), AGENT_MESSAGE_SENT, {"id": 8}) == 0


def test_websocket_send_failure_is_cleaned_up(client):
    channel = session_channel("sess-broken")
    with client.websocket_connect("/ws/chat-session/sess-broken"):
        # Not JSON serializable, so delivery to this socket fails
        main.chat_service.broadcaster.publish(channel, AGENT_MESSAGE_SENT, {"body": object()})

    assert main.chat_service.broadcaster.publish(channel, AGENT_MESSAGE_SENT, {"id": 1}) == 0

    with client.websocket_connect("/ws/chat-session/sess-broken") as ws:
        main.chat_service.broadcaster.publish(channel, AGENT_MESSAGE_SENT, {"id": 2})
        assert ws.receive_json() == {"event": AGENT_MESSAGE_SENT, "message": {"id": 2}}


# ------------------------------------------------------------------
# knowledge base
# ------------------------------------------------------------------


def test_site_lifecycle_cascades_pages(client, db):
    created = client.post("/api/sites", json={"name": " Example ", "url": "https://example.com"})
    assert created.status_code == 201
    site_id = created.json()["id"]
    assert created.json()["name"] == "Example"

    db.add(IndexedPage(trusted_site_id=site_id, url="https://example.com/a", title="A", content="a" * 200))
    db.commit()

    updated = client.patch(f"/api/sites/{site_id}", json={"is_active": False})
    assert updated.json()["is_active"] is False
    assert [s["id"] for s in client.get("/api/sites").json()] == [site_id]

    assert client.delete(f"/api/sites/{site_id}").status_code == 200
    db.expire_all()
    assert db.query(TrustedSite).count() == 0
    assert db.query(IndexedPage).count() == 0


def test_site_url_must_be_http(client):
    assert client.post("/api/sites", json={"name": "Bad", "url": "ftp://example.com"}).status_code == 422


def test_missing_site_is_404(client):
    assert client.patch("/api/sites/99", json={"name": "x"}).status_code == 404
    assert client.delete("/api/sites/99").status_code == 404


def test_crawl_unknown_site_is_404(client):
    assert client.post("/api/sites/crawl", json={"site_id": 99}).status_code == 404


def test_crawl_without_sites_does_not_start(client):
    assert client.post("/api/sites/crawl", json={}).json() == {
        "message": "No active trusted sites to crawl.",
        "started": False,
    }


def test_crawl_runs_in_background(client):
    site_id = client.post("/api/sites", json={"name": "Example", "url": "https://example.com"}).json()["id"]

    with patch("main.SiteCrawler") as crawler_cls:
        response = client.post("/api/sites/crawl", json={"site_id": site_id})

    assert response.json()["started"] is True
    crawler_cls.from_settings.return_value.crawl.assert_called_once()
    assert crawler_cls.from_settings.return_value.crawl.call_args.args[1] == site_id


def test_embed_requires_api_key(client, monkeypatch):
    monkeypatch.setattr(main.chat_service, "settings", Settings())

    response = client.post("/api/pages/embed", json={})

    assert response.status_code == 503
    assert "OPENAI_API_KEY" in response.json()["detail"]


def test_embed_starts_job(client, monkeypatch, settings):
    monkeypatch.setattr(main.chat_service, "settings", settings)

    with patch("main.embed_task") as embed_task:
        response = client.post("/api/pages/embed", json={"fresh": True})

    assert response.json() == {"message": "Embedding generation started in background", "started": True}
    embed_task.assert_called_once_with(True)


def test_status_counts_pages(client, make_page):
    assert client.get("/api/status").json()["message"] == "No pages indexed"

    make_page("https://example.com/a")
    make_page("https://example.com/b", embedding=[0.1])

    assert client.get("/api/status").json() == {
        "ready": True,
        "message": "Ready",
        "pages_indexed": 2,
        "pages_embedded": 1,
    }


def test_health(client):
    data = client.get("/health").json()

    assert data["database"] == "connected"
    assert data["status"] == "healthy"
