"""Tests for the webhook and admin HTTP routes."""

import pytest
from fastapi.testclient import TestClient

from helpers import text_update
from relay.database import SessionLocal
from relay.main import app
from relay.models import User


class RecordingDispatcher:
    def __init__(self):
        self.submitted = []

    def submit(self, inbound):
        self.submitted.append(inbound)

    async def drain(self):
        return None


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def dispatcher(client):
    recorder = RecordingDispatcher()
    app.state.dispatcher = recorder
    return recorder


@pytest.fixture
def seeded(store):
    store.get_or_create_user(11, "Anna", "Petrova")
    store.get_or_create_user(22, "Boris")
    store.append_message(11, "user", "Hi")
    store.append_message(11, "assistant", "Hello!")
    store.append_message(22, "user", "Price?")
    return store


class TestWebhook:
    @pytest.mark.parametrize("path", ["/", "/webhook"])
    def test_message_is_dispatched(self, client, dispatcher, path):
        response = client.post(path, json={"update_id": 1, "message": text_update(42, "Hello")})

        assert response.status_code == 200
        assert response.text == "OK"
        (inbound,) = dispatcher.submitted
        assert inbound.tg_id == 42
        assert inbound.text == "Hello"

    def test_update_without_message_is_acknowledged(self, client, dispatcher):
        response = client.post("/webhook", json={"update_id": 2, "edited_message": {}})

        assert response.status_code == 200
        assert dispatcher.submitted == []

    def test_invalid_json_is_acknowledged(self, client, dispatcher):
        response = client.post(
            "/webhook", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert dispatcher.submitted == []

    def test_message_without_sender_is_acknowledged(self, client, dispatcher):
        response = client.post("/webhook", json={"message": {"text": "hi"}})

        assert response.status_code == 200
        assert dispatcher.submitted == []

    @pytest.mark.parametrize("sender_id", ["abc", None])
    def test_message_with_unusable_sender_id_is_acknowledged(self, client, dispatcher, sender_id):
        response = client.post(
            "/webhook",
            json={"message": {"from": {"id": sender_id}, "chat": {"id": 1}, "text": "hi"}},
        )

        assert response.status_code == 200
        assert response.text == "OK"
        assert dispatcher.submitted == []

    def test_get_on_webhook_not_allowed(self, client):
        assert client.get("/webhook").status_code == 405

    def test_banner_and_health(self, client):
        assert "running" in client.get("/").text
        assert client.get("/health").json() == {"status": "ok"}


class TestAdminReads:
    def test_stats(self, client, seeded):
        data = client.get("/api/admin/stats").json()

        assert (data["users"], data["dialogs"], data["assistants"]) == (2, 3, 0)
        assert "timestamp" in data

    def test_users(self, client, seeded):
        users = client.get("/api/admin/users").json()

        assert {u["tg_id"] for u in users} == {11, 22}
        assert {u["full_name"] for u in users} == {"Anna Petrova", "Boris"}

    def test_dialogs_paginated_newest_first(self, client, seeded):
        first = client.get("/api/admin/dialogs", params={"page": 1, "limit": 2}).json()
        second = client.get("/api/admin/dialogs", params={"page": 2, "limit": 2}).json()

        assert [d["content"] for d in first] == ["Price?", "Hello!"]
        assert first[0]["full_name"] == "Boris"
        assert [d["content"] for d in second] == ["Hi"]

    def test_user_dialogs_chronological(self, client, seeded):
        rows = client.get("/api/admin/dialogs/11").json()

        assert [(d["role"], d["content"]) for d in rows] == [("user", "Hi"), ("assistant", "Hello!")]

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/admin/stats",
            headers={"Origin": "https://admin.example.com", "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestAdminAssistants:
    def test_crud(self, client):
        created = client.post(
            "/api/admin/assistants",
            json={"name": "Sales", "system_prompt": "You sell dresses.", "tov_snippet": "Warm."},
        )
        assert created.status_code == 200
        assistant = created.json()
        assert assistant["id"].startswith("assistant_")
        assert assistant["type"] == "ai"
        assert assistant["is_active"] is True

        listed = client.get("/api/admin/assistants").json()
        assert [a["id"] for a in listed] == [assistant["id"]]

        updated = client.put(
            f"/api/admin/assistants/{assistant['id']}", json={"is_active": False}
        ).json()
        assert updated["is_active"] is False
        assert updated["tov_snippet"] == "Warm."

        assert client.delete(f"/api/admin/assistants/{assistant['id']}").json() == {"success": True}
        assert client.get("/api/admin/assistants").json() == []

    def test_missing_assistant(self, client):
        assert client.put("/api/admin/assistants/assistant_nope", json={"name": "x"}).status_code == 404
        assert client.delete("/api/admin/assistants/assistant_nope").status_code == 404

    def test_invalid_type_rejected(self, client):
        response = client.post(
            "/api/admin/assistants",
            json={"name": "x", "system_prompt": "p", "type": "robot"},
        )
        assert response.status_code == 422

    def test_unavailable_store(self, client):
        app.state.store.available = False

        response = client.post("/api/admin/assistants", json={"name": "x", "system_prompt": "p"})

        assert response.status_code == 503


class TestDirectQuery:
    def test_select(self, client, seeded):
        response = client.post(
            "/api/admin/query", json={"query": "SELECT tg_id, full_name FROM users ORDER BY tg_id"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == [
            {"tg_id": 11, "full_name": "Anna Petrova"},
            {"tg_id": 22, "full_name": "Boris"},
        ]

    def test_alias_path(self, client, seeded):
        response = client.post("/api/admin/direct-query", json={"query": "SELECT COUNT(*) AS n FROM dialogs"})

        assert response.json()["data"] == [{"n": 3}]

    @pytest.mark.parametrize(
        "query",
        [
            "DELETE FROM users",
            "  delete from users",
            "\n\tDrop TABLE users",
            "UPDATE users SET is_blocked = 1",
            "insert into users (tg_id) values (1)",
            "ALTER TABLE users ADD COLUMN x TEXT",
            "/* x */ DELETE FROM users",
            "-- hi\nDROP TABLE assistants",
        ],
    )
    def test_mutating_statements_rejected(self, client, seeded, query):
        response = client.post("/api/admin/query", json={"query": query})

        assert response.status_code == 400
        with SessionLocal() as db:
            assert db.query(User).count() == 2

    def test_write_behind_read_keyword_is_refused(self, client, seeded):
        response = client.post(
            "/api/admin/query", json={"query": "WITH d AS (SELECT 1) DELETE FROM users"}
        )

        assert response.status_code == 500
        assert response.json()["success"] is False
        with SessionLocal() as db:
            assert db.query(User).count() == 2

    def test_later_requests_can_write(self, client, seeded):
        client.post("/api/admin/query", json={"query": "SELECT 1"})

        response = client.post("/api/admin/assistants", json={"name": "x", "system_prompt": "p"})

        assert response.status_code == 200

    def test_empty_query(self, client):
        assert client.post("/api/admin/query", json={"query": "   "}).status_code == 400
        assert client.post("/api/admin/query", json={}).status_code == 400

    def test_sql_error(self, client):
        response = client.post("/api/admin/query", json={"query": "SELECT * FROM nowhere"})

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert "nowhere" in response.json()["error"]
