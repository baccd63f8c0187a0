"""Integration tests for the chat HTTP API."""
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import pytest
from services.errors import StoreError, UpstreamError
from conftest import completion


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.fixture
def alice(api_client):
    response = api_client.post("/api/auth/register", json={
        "name": "Alice",
        "email": "alice@example.com",
        "password": "hunter2",
    })
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def bob(api_client):
    response = api_client.post("/api/auth/register", json={
        "name": "Bob",
        "email": "bob@example.com",
        "password": "secret",
    })
    return response.json()


class TestAuthEndpoints:
    """Registration, login and identity resolution."""

    def test_register_returns_public_user(self, alice):
        assert alice["name"] == "Alice"
        assert alice["email"] == "alice@example.com"
        assert "password" not in alice
        assert "password_hash" not in alice

    def test_register_duplicate_email(self, api_client, alice):
        response = api_client.post("/api/auth/register", json={
            "name": "Other",
            "email": "alice@example.com",
            "password": "x",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"]["message"] == "Email already in use"

    def test_login(self, api_client, alice):
        response = api_client.post("/api/auth/login", json={"email": "alice@example.com", "password": "hunter2"})

        assert response.status_code == 200
        assert response.json()["id"] == alice["id"]

    def test_login_wrong_password(self, api_client, alice):
        response = api_client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})

        assert response.status_code == 401
        assert response.json()["detail"]["error"]["code"] == "AUTHORIZATION_ERROR"

    def test_missing_identity_is_rejected(self, api_client):
        assert api_client.get("/api/chats").status_code == 401
        assert api_client.get("/api/chats", headers=_headers(999)).status_code == 401

    def test_current_user_and_avatar(self, api_client, alice):
        assert api_client.get("/api/user", headers=_headers(alice["id"])).json()["name"] == "Alice"

        response = api_client.patch("/api/user/avatar", json={"avatar": "logo.jpg"}, headers=_headers(alice["id"]))

        assert response.status_code == 200
        assert response.json()["avatar"] == "logo.jpg"


class TestChatEndpoint:
    """POST /api/chat and the conversation resources."""

    def test_first_message_creates_conversation(self, api_client, gateway, alice):
        gateway.complete.return_value = completion("Hi! I'm doing well.")

        response = api_client.post("/api/chat", json={"message": "Hello, how are you?"}, headers=_headers(alice["id"]))

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Hi! I'm doing well."
        assert data["title"] == "Hello, how are you?"

        chats = api_client.get("/api/chats", headers=_headers(alice["id"])).json()
        assert [chat["id"] for chat in chats] == [data["chat_id"]]

        detail = api_client.get(f"/api/chat/{data['chat_id']}", headers=_headers(alice["id"])).json()
        assert [(m["role"], m["content"]) for m in detail["messages"]] == [
            ("user", "Hello, how are you?"),
            ("model", "Hi! I'm doing well."),
        ]
        assert detail["messages"][1]["id"] == data["message_id"]

    def test_follow_up_replays_history(self, api_client, gateway, alice):
        first = api_client.post("/api/chat", json={"message": "a"}, headers=_headers(alice["id"])).json()
        gateway.complete.return_value = completion("d")

        response = api_client.post(
            "/api/chat",
            json={"message": "c", "chat_id": first["chat_id"]},
            headers=_headers(alice["id"]),
        )

        assert response.status_code == 200
        assert response.json()["chat_id"] == first["chat_id"]
        prior_turns, current_input = gateway.complete.call_args.args[:2]
        assert [(t.role, t.content) for t in prior_turns] == [("user", "a"), ("model", "Model reply")]
        assert current_input == "c"

    def test_follow_up_response_comes_from_the_stored_exchange(self, api_client, manager, monkeypatch, alice):
        first = api_client.post("/api/chat", json={"message": "a"}, headers=_headers(alice["id"])).json()

        def unavailable(conversation_id, user):
            raise StoreError("Transcript store unavailable: connection reset")

        monkeypatch.setattr(manager, "get_conversation", unavailable)

        response = api_client.post(
            "/api/chat",
            json={"message": "b", "chat_id": first["chat_id"]},
            headers=_headers(alice["id"]),
        )

        assert response.status_code == 200
        assert response.json()["title"] == "a"
        assert response.json()["message_id"] > first["message_id"]

    def test_upstream_failure_returns_chat_id(self, api_client, gateway, alice):
        gateway.complete.side_effect = UpstreamError(
            "Rate limit exceeded", code="RATE_LIMIT_ERROR", details={"retry_after": 60}
        )

        response = api_client.post("/api/chat", json={"message": "Hello"}, headers=_headers(alice["id"]))

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"]["code"] == "RATE_LIMIT_ERROR"
        assert isinstance(detail["chat_id"], int)

        transcript = api_client.get(f"/api/chat/{detail['chat_id']}", headers=_headers(alice["id"])).json()
        assert [m["role"] for m in transcript["messages"]] == ["user"]

    def test_store_failure_is_503_without_chat_id(self, api_client, fake_client, gateway, alice):
        fake_client.fail_on.add(("conversations", "insert"))

        response = api_client.post("/api/chat", json={"message": "Hello"}, headers=_headers(alice["id"]))

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"]["code"] == "STORE_UNAVAILABLE"
        assert "chat_id" not in detail
        gateway.complete.assert_not_called()

    def test_empty_message_is_rejected(self, api_client, gateway, alice):
        response = api_client.post("/api/chat", json={"message": "   "}, headers=_headers(alice["id"]))

        assert response.status_code == 400
        assert api_client.get("/api/chats", headers=_headers(alice["id"])).json() == []

    def test_draft_identifier_never_reaches_the_server(self, api_client, alice):
        response = api_client.post(
            "/api/chat",
            json={"message": "Hello", "chat_id": "draft_1760812800000_1"},
            headers=_headers(alice["id"]),
        )

        assert response.status_code == 422
        assert api_client.delete("/api/chat/draft_1760812800000_1", headers=_headers(alice["id"])).status_code == 422

    def test_unknown_conversation(self, api_client, alice):
        assert api_client.get("/api/chat/999", headers=_headers(alice["id"])).status_code == 404

        response = api_client.post("/api/chat", json={"message": "hi", "chat_id": 999}, headers=_headers(alice["id"]))
        assert response.status_code == 404

    def test_foreign_conversation_is_forbidden(self, api_client, alice, bob):
        chat_id = api_client.post("/api/chat", json={"message": "mine"}, headers=_headers(alice["id"])).json()["chat_id"]

        assert api_client.get(f"/api/chat/{chat_id}", headers=_headers(bob["id"])).status_code == 403
        assert api_client.post(
            "/api/chat", json={"message": "x", "chat_id": chat_id}, headers=_headers(bob["id"])
        ).status_code == 403
        assert api_client.delete(f"/api/chat/{chat_id}", headers=_headers(bob["id"])).status_code == 403
        assert api_client.get("/api/chats", headers=_headers(bob["id"])).json() == []

    def test_concurrent_send_conflicts(self, api_client, manager, alice):
        chat_id = api_client.post("/api/chat", json={"message": "a"}, headers=_headers(alice["id"])).json()["chat_id"]

        with manager._completion_slot(chat_id):
            response = api_client.post(
                "/api/chat", json={"message": "b", "chat_id": chat_id}, headers=_headers(alice["id"])
            )

        assert response.status_code == 409
        assert response.json()["detail"]["error"]["code"] == "CONFLICT"

    def test_delete_is_idempotent(self, api_client, alice):
        chat_id = api_client.post("/api/chat", json={"message": "a"}, headers=_headers(alice["id"])).json()["chat_id"]

        first = api_client.delete(f"/api/chat/{chat_id}", headers=_headers(alice["id"]))
        second = api_client.delete(f"/api/chat/{chat_id}", headers=_headers(alice["id"]))

        assert first.json() == {"success": True, "deleted": True}
        assert second.status_code == 200
        assert second.json() == {"success": True, "deleted": False}
        assert api_client.get(f"/api/chat/{chat_id}", headers=_headers(alice["id"])).status_code == 404

    def test_explicit_new_chat(self, api_client, alice):
        response = api_client.post("/api/chat/new", json={}, headers=_headers(alice["id"]))

        assert response.status_code == 200
        assert response.json()["title"] == "New Chat"

    def test_health(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json()["completion_configured"] is True
