"""Tests for API routes."""
import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from vooli.api.deps import get_manager
from vooli.main import app
from vooli.services.run_manager import RunHandle, RunManager

CHAT_ID = str(uuid.uuid4())
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def _chat(user_id="user-1"):
    return {"id": CHAT_ID, "user_id": user_id, "name": "headphones", "created_at": NOW, "updated_at": NOW}


def _message(role="user", content="best wireless headphones"):
    return {"id": str(uuid.uuid4()), "chat_id": CHAT_ID, "role": role, "content": content, "created_at": NOW}


@pytest.fixture
def manager():
    run_manager = RunManager(orchestrator=MagicMock(), store=MagicMock())
    run_manager.submit_message = AsyncMock(return_value=RunHandle(run_id="run-1", access_token="secret"))
    app.dependency_overrides[get_manager] = lambda: run_manager
    yield run_manager
    app.dependency_overrides.clear()


@pytest.fixture
def client(manager):
    return TestClient(app)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "vooli"


def test_missing_identity_is_rejected(client):
    response = client.get("/api/chats")
    assert response.status_code == 401


def test_create_chat_with_message_starts_run(client, manager):
    with (
        patch("vooli.api.routes.chats.db.create_chat", new=AsyncMock(return_value=_chat())),
        patch("vooli.api.routes.chats.db.create_message", new=AsyncMock(return_value=_message())),
    ):
        response = client.post(
            "/api/chats",
            json={"message": "best wireless headphones"},
            headers={"X-User-Id": "user-1"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["chat"]["id"] == CHAT_ID
    assert data["run"] == {"run_id": "run-1", "token": "secret", "message": data["message"]}
    manager.submit_message.assert_awaited_once_with(CHAT_ID, "best wireless headphones")


def test_send_message_to_unowned_chat_returns_404(client, manager):
    with patch("vooli.api.routes.chats.db.get_chat", new=AsyncMock(return_value=None)):
        response = client.post(
            f"/api/chats/{CHAT_ID}/messages",
            json={"content": "headphones"},
            headers={"X-User-Id": "intruder"},
        )
    assert response.status_code == 404
    manager.submit_message.assert_not_awaited()


def test_send_message_returns_run_handle(client, manager):
    with (
        patch("vooli.api.routes.chats.db.get_chat", new=AsyncMock(return_value=_chat())),
        patch("vooli.api.routes.chats.db.create_message", new=AsyncMock(return_value=_message())),
    ):
        response = client.post(
            f"/api/chats/{CHAT_ID}/messages",
            json={"content": "best wireless headphones"},
            headers={"X-User-Id": "user-1"},
        )
    assert response.status_code == 200
    assert response.json()["run_id"] == "run-1"
    assert response.json()["token"] == "secret"


def test_send_empty_message_is_rejected(client):
    response = client.post(
        f"/api/chats/{CHAT_ID}/messages",
        json={"content": ""},
        headers={"X-User-Id": "user-1"},
    )
    assert response.status_code == 422


def test_chat_messages_include_products_and_sources(client):
    assistant = _message(role="assistant", content="Buy the Sony at bestbuy.com")
    product = {
        "id": str(uuid.uuid4()),
        "message_id": assistant["id"],
        "name": "Sony WH-1000XM5",
        "description": "Headphones",
        "price": "349.99 USD",
        "store_name": "bestbuy.com",
        "url": "https://www.bestbuy.com/sony",
        "image_url": "https://img.example.com/sony.jpg",
        "created_at": NOW,
    }
    with (
        patch("vooli.api.routes.chats.db.get_chat", new=AsyncMock(return_value=_chat())),
        patch("vooli.api.routes.chats.db.get_messages", new=AsyncMock(return_value=[assistant])),
        patch("vooli.api.routes.chats.db.get_products", new=AsyncMock(return_value=[product])),
        patch("vooli.api.routes.chats.db.get_sources", new=AsyncMock(return_value=[])),
    ):
        response = client.get(f"/api/chats/{CHAT_ID}/messages", headers={"X-User-Id": "user-1"})

    assert response.status_code == 200
    message = response.json()["messages"][0]
    assert message["products"][0]["store_name"] == "bestbuy.com"
    assert message["sources"] == []


def test_run_snapshot_requires_token(client, manager):
    channel = manager.registry.create("run-snap", access_token="tok")
    channel.set_status("searching-product")

    assert client.get("/api/runs/run-snap").status_code == 403
    assert client.get("/api/runs/run-snap", params={"token": "bad"}).status_code == 403
    assert client.get("/api/runs/unknown", params={"token": "tok"}).status_code == 404

    response = client.get("/api/runs/run-snap", headers={"X-Run-Token": "tok"})
    assert response.status_code == 200
    assert response.json()["status"] == "searching-product"
    assert response.json()["closed"] is False


def test_run_stream_replays_finished_run(client, manager):
    channel = manager.registry.create("run-done", access_token="tok")
    channel.set_status("generating-response")
    channel.append_stream_token("Buy ")
    channel.append_stream_token("Sony.")
    channel.set_status("complete")
    channel.close()

    response = client.get("/api/runs/run-done/stream", params={"token": "tok"})

    assert response.status_code == 200
    events = [line[len("event: "):].strip() for line in response.text.splitlines() if line.startswith("event: ")]
    assert events == ["snapshot", "complete"]
    data_lines = [line[len("data: "):] for line in response.text.splitlines() if line.startswith("data: ")]
    final = json.loads(data_lines[-1])
    assert final["stream"]["response"] == ["Buy ", "Sony."]
    assert final["status"] == "complete"


def test_list_chats_returns_callers_chats(client):
    with patch("vooli.api.routes.chats.db.get_chats", new=AsyncMock(return_value=[_chat()])) as get_chats:
        response = client.get("/api/chats", headers={"X-User-Id": "user-1"})
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [CHAT_ID]
    get_chats.assert_awaited_once_with("user-1")


def test_list_chats_database_error_returns_500(client):
    with patch(
        "vooli.api.routes.chats.db.get_chats",
        new=AsyncMock(side_effect=RuntimeError("Database not configured")),
    ):
        response = client.get("/api/chats", headers={"X-User-Id": "user-1"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to list chats"
