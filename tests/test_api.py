"""Tests for FastAPI endpoints."""

import sys
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

sys.path.insert(0, "src")

from chatline import api_state as state
from chatline.api_clients import OpenAIGateway
from chatline.chat import GATEWAY_FAILURE_FALLBACK, MessageRole
from chatline.config import Settings
from chatline.state import SQLiteBackend

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content):
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]
    return response


@pytest.fixture
def settings():
    return Settings(
        secret_key="api-test-signing-key-that-is-long-enough",
        database_url="sqlite:///:memory:",
        openai_api_key=None,
        rate_limit_auth="1000/minute",
    )


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_completion("Hello!"))
    return client


@pytest.fixture
def components(settings, openai_client):
    gateway = OpenAIGateway(
        api_key=None, system_prompt=settings.system_prompt, client=openai_client
    )
    return state.init_components(
        settings, backend=SQLiteBackend(":memory:"), gateway=gateway, force=True
    )


@pytest.fixture
def client(settings, components):
    """Create a test client around freshly built components."""
    with patch("chatline.api.get_settings", return_value=settings):
        from chatline.api import app

        state.limiter.enabled = False
        with TestClient(app) as test_client:
            yield test_client
        state.limiter.enabled = True


@pytest.fixture
def token(components):
    return components.validator.issue("user-1")


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


class TestMessages:
    """Tests for /messages."""

    def test_list_without_token(self, client):
        response = client.get("/messages")
        assert response.status_code == 401
        body = response.json()
        assert body["error"]["error_code"] == "Unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_list_with_bad_token(self, client):
        response = client.get("/messages", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_post_then_list(self, client, auth_headers):
        response = client.post(
            "/messages", json={"text": "Hi", "sender": "user"}, headers=auth_headers
        )
        assert response.status_code == 201
        created = response.json()
        assert created["text"] == "Hi"
        assert created["sender"] == "user"
        assert created["id"]

        response = client.get("/messages", headers=auth_headers)
        assert response.status_code == 200
        messages = response.json()
        assert len(messages) == 1
        assert messages[0]["text"] == "Hi"
        assert messages[0]["sender"] == "user"
        assert messages[0]["id"] == created["id"]

    def test_empty_history(self, client, auth_headers):
        response = client.get("/messages", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == []

    def test_history_is_per_user(self, client, components, auth_headers):
        other = {"Authorization": f"Bearer {components.validator.issue('user-2')}"}
        client.post("/messages", json={"text": "mine"}, headers=auth_headers)
        client.post("/messages", json={"text": "theirs"}, headers=other)

        texts = [m["text"] for m in client.get("/messages", headers=auth_headers).json()]
        assert texts == ["mine"]

    def test_assistant_alias(self, client, auth_headers):
        response = client.post(
            "/messages", json={"text": "Hello", "sender": "assistant"}, headers=auth_headers
        )
        assert response.status_code == 201
        assert response.json()["sender"] == "ai"

    def test_post_without_token_stores_nothing(self, client, components):
        response = client.post("/messages", json={"text": "Hi"})
        assert response.status_code == 401
        assert components.messages.count_by_user("user-1") == 0

    @pytest.mark.parametrize(
        "body", [{}, {"text": ""}, {"text": "   "}, {"text": "Hi", "sender": "robot"}]
    )
    def test_malformed_body(self, client, auth_headers, body):
        response = client.post("/messages", json=body, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "BadRequest"

    def test_request_id_header(self, client, auth_headers):
        response = client.get("/messages", headers=auth_headers)
        assert response.headers.get("X-Request-ID")


    def test_unsupported_method(self, client, auth_headers):
        response = client.delete("/messages", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "BadRequest"

    def test_unknown_path(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "NotFound"


class TestAIChat:
    """Tests for /ai-chat."""

    TRANSCRIPT = {
        "messages": [
            {"sender": "user", "text": "Hi"},
            {"sender": "ai", "text": "Hello! How can I help?"},
            {"sender": "user", "text": "What are your hours?"},
        ]
    }

    def test_reply(self, client, auth_headers, openai_client, components):
        response = client.post("/ai-chat", json=self.TRANSCRIPT, headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"reply": "Hello!"}

        sent = openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert sent[0]["role"] == "system"
        assert [m["role"] for m in sent[1:]] == ["user", "assistant", "user"]
        assert components.messages.count_by_user("user-1") == 0

    def test_requires_token(self, client, openai_client):
        response = client.post("/ai-chat", json=self.TRANSCRIPT)
        assert response.status_code == 401
        openai_client.chat.completions.create.assert_not_called()

    def test_empty_transcript(self, client, auth_headers):
        response = client.post("/ai-chat", json={"messages": []}, headers=auth_headers)
        assert response.status_code == 400

    def test_gateway_failure(self, client, auth_headers, openai_client):
        openai_client.chat.completions.create.side_effect = openai.APITimeoutError(
            request=_REQUEST
        )
        response = client.post("/ai-chat", json=self.TRANSCRIPT, headers=auth_headers)
        assert response.status_code == 500
        assert response.json()["error"]["error_code"] == "GatewayFailure"


class TestTurn:
    """Tests for /chat."""

    def test_turn_stores_both_messages(self, client, auth_headers, components):
        response = client.post("/chat", json={"text": "Hi"}, headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["reply"] == "Hello!"
        assert body["state"] == "done"
        assert body["degraded"] is False
        assert body["assistant_message"]["sender"] == "ai"

        history = components.messages.list_by_user("user-1")
        assert [(m.role, m.text) for m in history] == [
            (MessageRole.USER, "Hi"),
            (MessageRole.ASSISTANT, "Hello!"),
        ]

    def test_turn_with_gateway_failure(self, client, auth_headers, openai_client, components):
        openai_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=_REQUEST
        )
        response = client.post("/chat", json={"text": "Hi"}, headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["reply"] == GATEWAY_FAILURE_FALLBACK
        assert body["state"] == "error"
        assert body["error"] == "GatewayFailure"
        assert body["degraded"] is True
        assert [m.text for m in components.messages.list_by_user("user-1")] == ["Hi"]

    def test_turn_requires_token(self, client, components):
        response = client.post("/chat", json={"text": "Hi"})
        assert response.status_code == 401
        assert components.messages.count_by_user("user-1") == 0


class TestAuthRoutes:
    """Tests for /auth."""

    CREDENTIALS = {"email": "Ada@Example.com", "password": "correct horse"}

    def test_register(self, client):
        response = client.post("/auth/register", json=self.CREDENTIALS)
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "User created successfully"
        assert body["userId"]

    def test_register_duplicate(self, client):
        client.post("/auth/register", json=self.CREDENTIALS)
        duplicate = {**self.CREDENTIALS, "email": "ada@example.com"}
        response = client.post("/auth/register", json=duplicate)
        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "Conflict"

    @pytest.mark.parametrize(
        "body",
        [{}, {"email": "ada@example.com"}, {"password": "x"}, {"email": "", "password": ""}],
    )
    def test_register_missing_fields(self, client, body):
        response = client.post("/auth/register", json=body)
        assert response.status_code == 400

    def test_login_round_trip(self, client):
        user_id = client.post("/auth/register", json=self.CREDENTIALS).json()["userId"]

        response = client.post("/auth/login", json=self.CREDENTIALS)
        assert response.status_code == 200
        token = response.json()["access_token"]

        headers = {"Authorization": f"Bearer {token}"}
        client.post("/messages", json={"text": "Hi"}, headers=headers)
        assert client.get("/messages", headers=headers).status_code == 200
        assert state.get_components().messages.count_by_user(user_id) == 1

    def test_login_wrong_password(self, client):
        client.post("/auth/register", json=self.CREDENTIALS)
        response = client.post(
            "/auth/login", json={**self.CREDENTIALS, "password": "wrong"}
        )
        assert response.status_code == 401

    def test_login_unknown_user(self, client):
        response = client.post("/auth/login", json=self.CREDENTIALS)
        assert response.status_code == 401


class TestRealtimeChannel:
    """Tests for /ws."""

    def test_receives_own_messages(self, client, token, auth_headers):
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ack = ws.receive_json()
            assert ack["type"] == "connected"
            assert ack["payload"]["user_id"] == "user-1"

            client.post("/messages", json={"text": "Hi"}, headers=auth_headers)
            event = ws.receive_json()
            assert event["type"] == "receiveMessage"
            assert event["payload"]["text"] == "Hi"
            assert event["payload"]["sender"] == "user"

    def test_header_authentication(self, client, auth_headers):
        with client.websocket_connect("/ws", headers=auth_headers) as ws:
            assert ws.receive_json()["type"] == "connected"

    def test_send_message_relayed(self, client, token):
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"type": "sendMessage", "payload": {"text": "typing"}})
            event = ws.receive_json()
            assert event == {"type": "receiveMessage", "payload": {"text": "typing"}}

    def test_binary_garbage_is_ignored(self, client, token):
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_bytes(b"\xff\xfe\x00")
            ws.send_text("not json")
            ws.send_json({"type": "sendMessage", "payload": {"text": "still here"}})
            event = ws.receive_json()
            assert event == {"type": "receiveMessage", "payload": {"text": "still here"}}

    def test_binary_json_frame_relayed(self, client, token):
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_bytes(b'{"type": "sendMessage", "payload": 1}')
            ws.send_json({"type": "sendMessage", "payload": 2})
            assert ws.receive_json()["payload"] == 1
            assert ws.receive_json()["payload"] == 2

    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=not-a-token") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["connections"] == 0
