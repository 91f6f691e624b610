"""HTTP surface: chat endpoints, health and error mapping."""
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from chatrelay.core.config import Settings
from chatrelay.core.main import app
from chatrelay.core.services.relay import ChatRelay, get_relay
from chatrelay.core.services.rocketchat_client import RocketChatClient

WEBHOOK_TOKEN = "hook-secret"


class FakeRocketChat:
    """Mock REST backend keyed on the endpoint name."""

    def __init__(self):
        self.requests = []
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((endpoint, request))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"success": False, "error": "boom"})
        if endpoint == "login":
            return httpx.Response(200, json={"status": "success", "data": {"authToken": "t", "userId": "admin-id"}})
        if endpoint == "chat.postMessage":
            body = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "message": {"rid": body["roomId"], "msg": body["text"]}})
        if endpoint == "channels.messages":
            return httpx.Response(200, json={"messages": [{"msg": "latest"}, {"msg": "older"}], "success": True})
        if endpoint == "im.create":
            return httpx.Response(200, json={"room": {"_id": "dm-1"}, "success": True})
        if endpoint == "users.create":
            return httpx.Response(200, json={"user": {"_id": "new-user"}, "success": True})
        return httpx.Response(404, json={"success": False})

    def endpoints(self):
        return [name for name, _ in self.requests]


@pytest.fixture
def backend():
    return FakeRocketChat()


@pytest.fixture
def relay(backend):
    config = Settings(
        rocketchat_base_url="http://chat.test/api/v1",
        rocketchat_admin_username="admin",
        rocketchat_admin_password="pw",
        realtime_enabled=False,
        webhook_token=WEBHOOK_TOKEN,
    )
    client = RocketChatClient(
        config.rocketchat_base_url,
        username="admin",
        password="pw",
        transport=httpx.MockTransport(backend),
    )
    return ChatRelay(config, client=client)


@pytest.fixture
def api(relay):
    app.dependency_overrides[get_relay] = lambda: relay
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_send_returns_rocketchat_response(api, backend):
    response = api.post("/chat/send", json={"roomId": "GENERAL", "message": "hi"})
    assert response.status_code == 200
    assert response.json()["message"] == {"rid": "GENERAL", "msg": "hi"}
    assert backend.endpoints() == ["chat.postMessage"]


def test_send_rejects_empty_message(api, backend):
    response = api.post("/chat/send", json={"roomId": "GENERAL", "message": ""})
    assert response.status_code == 422
    assert backend.requests == []


def test_messages_lists_texts(api):
    response = api.get("/chat/messages", params={"roomId": "GENERAL"})
    assert response.status_code == 200
    assert response.json() == ["latest", "older"]


def test_login_then_create_user(api, backend, relay):
    assert api.post("/chat/login").json() == {"message": "Admin logged in successfully"}
    assert relay.client.user_id == "admin-id"
    response = api.post(
        "/chat/create-user",
        params={"username": "bob", "email": "bob@example.com", "name": "Bob", "password": "pw"},
    )
    assert response.status_code == 200
    assert backend.endpoints() == ["login", "users.create"]
    _, create_request = backend.requests[-1]
    assert create_request.headers["X-Auth-Token"] == "t"


def test_create_direct_message_room(api):
    response = api.post("/chat/create-direct-message-room", params={"username": "bob"})
    assert response.status_code == 200
    assert response.json()["roomId"] == "dm-1"


def test_upstream_failure_maps_to_bad_gateway(api, backend):
    backend.fail_with = 500
    response = api.post("/chat/send", json={"roomId": "GENERAL", "message": "hi"})
    assert response.status_code == 502
    body = response.json()
    assert body["status"] == 502
    assert body["error"] == "Bad Gateway"
    assert "boom" in body["message"]
    assert "timestamp" in body


def test_health_reports_realtime_state(api):
    response = api.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["realtime"]["state"] == "disconnected"
    assert body["active_sessions"] == 0


def test_simulate_message_requires_webhook_token(api, relay, monkeypatch):
    seen = []
    monkeypatch.setattr(relay, "handle_room_message", seen.append)
    payload = {"user_name": "bob", "text": "help", "channel_id": "GENERAL"}

    assert api.post("/chat/simulate-message", json=payload).status_code == 401
    bad = api.post("/chat/simulate-message", json=payload, headers={"X-RocketChat-Webhook-Token": "nope"})
    assert bad.status_code == 401
    assert seen == []

    ok = api.post("/chat/simulate-message", json=payload, headers={"X-RocketChat-Webhook-Token": WEBHOOK_TOKEN})
    assert ok.status_code == 200
    assert [(m.room_id, m.sender, m.body) for m in seen] == [("GENERAL", "bob", "help")]
