import json
import threading
from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from guildsite.main import create_app


class Upstream:
    """MockTransport handler recording calls and answering with a fixed response."""

    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = payload if payload is not None else {"ok": True}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)


@pytest.fixture
def webhook():
    return Upstream()


@pytest.fixture
def status_api():
    return Upstream(payload={"online": True, "players": {"online": 3, "max": 20}})


@pytest.fixture
def make_client(settings, clock, webhook, status_api):
    clients = []

    def factory(**overrides):
        app = create_app(
            replace(settings, **overrides),
            clock=clock,
            webhook_transport=httpx.MockTransport(webhook),
            status_transport=httpx.MockTransport(status_api),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


# ──────────────────────────────────────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────────────────────────────────────

def test_health(client):
    data = client.get("/api/health").json()
    assert data["status"] == "ok"
    assert data["chat_messages"] == 0
    assert data["security_level"] == "OK"
    assert data["backup"] == "IDLE"


# ──────────────────────────────────────────────────────────────────────────────
# Security
# ──────────────────────────────────────────────────────────────────────────────

def test_security_status_counts_requests(client):
    for _ in range(3):
        client.get("/api/health", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

    snap = client.get("/api/security/status").json()

    assert snap["totalInWindow"] == 4
    assert snap["statusLevel"] == "OK"
    assert snap["topSources"][0] == {"source": "203.0.113.9", "count": 3}
    assert snap["disasterMode"] is False


def test_manual_trigger_without_webhook(client, webhook):
    result = client.post("/api/security/trigger-backup").json()
    assert result == {"triggered": False, "reason": "No webhook configured"}
    assert webhook.requests == []


def test_manual_trigger_with_webhook(make_client, webhook):
    client = make_client(backup_webhook="https://hooks.example.test/backup")

    result = client.post("/api/security/trigger-backup").json()

    assert result == {"triggered": True, "status": 200}
    body = json.loads(webhook.requests[0].content)
    assert body["action"] == "backup"
    assert client.get("/api/security/status").json()["disasterMode"] is True


def test_critical_polling_triggers_backup_once(make_client, webhook, status_api):
    client = make_client(backup_webhook="https://hooks.example.test/backup")
    status_api.status = 502

    for _ in range(5):
        assert client.get("/api/status").status_code == 500

    first = client.get("/api/security/status").json()
    second = client.get("/api/security/status").json()

    assert first["statusLevel"] == "CRITICAL"
    assert first["disasterMode"] is True
    assert second["disasterMode"] is True
    assert len(webhook.requests) == 1
    assert any("error rate" in note for note in first["notes"])


def test_reset_disaster_mode(make_client):
    client = make_client(backup_webhook="https://hooks.example.test/backup")
    client.post("/api/security/trigger-backup")

    snap = client.post("/api/security/reset-disaster-mode").json()

    assert snap["disasterMode"] is False


def test_window_is_touched_from_the_event_loop_only(client):
    window = client.app.state.monitor.window
    threads = set()

    def tracked(method):
        def wrapper(*args, **kwargs):
            threads.add(threading.current_thread())
            return method(*args, **kwargs)
        return wrapper

    window.prune = tracked(window.prune)
    window.record_request = tracked(window.record_request)

    client.get("/api/health")
    client.get("/api/security/status")
    client.post("/api/security/reset-disaster-mode")

    assert len(threads) == 1


# ──────────────────────────────────────────────────────────────────────────────
# Reports
# ──────────────────────────────────────────────────────────────────────────────

def test_report_with_evidence(client):
    resp = client.post(
        "/report",
        data={"reporter": "alice", "reported": "griefer42", "reason": "burned spawn"},
        files={"evidence": ("screen shot.png", b"\x89PNG fake", "image/png")},
    )
    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True

    reports = client.get("/api/reports").json()
    assert reports == [
        {
            "id": body["reportId"],
            "reporter": "alice",
            "reported": "griefer42",
            "reason": "burned spawn",
            "evidenceFile": "screen_shot.png",
        }
    ]

    evidence = client.get(f"/reports/{body['reportId']}/screen_shot.png")
    assert evidence.status_code == 200
    assert evidence.content == b"\x89PNG fake"


def test_report_without_evidence(client):
    resp = client.post("/report", data={"reporter": "bob", "reported": "x", "reason": "spam"})
    assert resp.json()["success"] is True
    assert client.get("/api/reports").json()[0]["evidenceFile"] is None


# ──────────────────────────────────────────────────────────────────────────────
# Meta content
# ──────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("category", ["updates", "events", "items"])
def test_meta_add_and_list(client, category):
    assert client.get(f"/api/{category}").json() == []

    first = client.post(f"/api/{category}", json={"title": "One", "description": "first"}).json()
    second = client.post(f"/api/{category}", json={"title": "Two", "description": "second"}).json()

    assert first["title"] == "One"
    assert "date" in first
    listed = client.get(f"/api/{category}").json()
    assert [item["title"] for item in listed] == ["Two", "One"]
    assert listed[0]["id"] == second["id"]


def test_meta_corrupt_file_lists_empty(client, settings):
    with open(f"{settings.data_dir}/updates.json", "w", encoding="utf-8") as f:
        f.write("garbage")

    assert client.get("/api/updates").json() == []
    assert client.post("/api/updates", json={"title": "t"}).status_code == 500


# ──────────────────────────────────────────────────────────────────────────────
# Chat uploads
# ──────────────────────────────────────────────────────────────────────────────

def test_upload_image(client):
    resp = client.post("/api/chat/upload", files={"file": ("cat pic.png", b"img", "image/png")})
    body = resp.json()

    assert resp.status_code == 200
    assert body["type"] == "image"
    assert body["url"].startswith("/uploads/chat/")
    assert body["url"].endswith("_cat_pic.png")
    assert client.get(body["url"]).content == b"img"


def test_upload_rejects_mime(client):
    resp = client.post("/api/chat/upload", files={"file": ("x.exe", b"MZ", "application/octet-stream")})
    assert resp.status_code == 400


def test_upload_rejects_oversize(make_client):
    client = make_client(upload_max_bytes=4)
    resp = client.post("/api/chat/upload", files={"file": ("v.mp4", b"12345", "video/mp4")})
    assert resp.status_code == 413


def test_upload_requires_file(client):
    assert client.post("/api/chat/upload").status_code == 400


# ──────────────────────────────────────────────────────────────────────────────
# Server status proxy
# ──────────────────────────────────────────────────────────────────────────────

def test_status_proxy_defaults(client, status_api):
    data = client.get("/api/status").json()

    assert data["online"] is True
    assert data["tps"] is None
    assert str(status_api.requests[0].url).endswith("/flash.ateex.cloud:18786")


def test_status_proxy_custom_target(client, status_api):
    client.get("/api/status", params={"host": "mc.example.org", "port": "25565"})
    assert str(status_api.requests[0].url).endswith("/mc.example.org:25565")


def test_status_proxy_failure(client, status_api):
    status_api.status = 500
    resp = client.get("/api/status")
    assert resp.status_code == 500
    assert resp.json() == {"online": False, "error": "Could not fetch status"}


# ──────────────────────────────────────────────────────────────────────────────
# Chat socket
# ──────────────────────────────────────────────────────────────────────────────

def test_chat_socket_history_and_broadcast(client, clock):
    with client.websocket_connect("/ws/chat") as alice:
        assert alice.receive_json() == {"event": "history", "data": []}

        with client.websocket_connect("/ws/chat") as bob:
            assert bob.receive_json()["event"] == "history"

            alice.send_json({"event": "send", "ack": 1, "data": {"type": "text", "text": "hi all", "author": "alice"}})

            own = alice.receive_json()
            assert own["event"] == "new-message"
            assert own["data"]["content"] == "hi all"
            assert alice.receive_json() == {"event": "ack", "ack": 1, "data": {"ok": True}}

            other = bob.receive_json()
            assert other == own

    with client.websocket_connect("/ws/chat") as late:
        history = late.receive_json()["data"]
        assert [m["content"] for m in history] == ["hi all"]


def test_chat_socket_rejections_are_private(client, clock):
    with client.websocket_connect("/ws/chat") as ws:
        ws.receive_json()

        ws.send_json({"event": "send", "ack": "a", "data": {"type": "text", "text": "first"}})
        assert ws.receive_json()["event"] == "new-message"
        assert ws.receive_json()["data"] == {"ok": True}

        ws.send_json({"event": "send", "ack": "b", "data": {"type": "text", "text": "too soon"}})
        ack = ws.receive_json()
        assert ack["ack"] == "b"
        assert ack["data"]["ok"] is False

        clock.advance(2_000)
        ws.send_json({"event": "send", "ack": "c", "data": {"type": "gif", "url": "x"}})
        assert ws.receive_json()["data"] == {"ok": False, "error": "Unsupported message type"}

        ws.send_json({"event": "bogus", "ack": "d"})
        assert ws.receive_json()["data"] == {"ok": False, "error": "Unknown event"}

        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"error": "Malformed frame"}}
