"""
HTTP API Tests
==============

FastAPI endpoints over a runtime wired with fake network edges.
"""

import time

import pytest
from fastapi.testclient import TestClient

from terminal_narrator.config import AccumulatorConfig, SessionConfig, Settings, StreamConfig
from terminal_narrator.main import NarratorRuntime, create_app
from terminal_narrator.stream.encoder import encode_snapshot
from terminal_narrator.stream.envelope import build_envelope


def poll_until(fetch, predicate, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = fetch()
        if predicate(result):
            return result
        time.sleep(0.02)
    raise AssertionError("condition not met before timeout")


@pytest.fixture
def config():
    return Settings(
        session=SessionConfig(auto_connect=False),
        stream=StreamConfig(backoff_base_seconds=0.01, backoff_jitter_ratio=0.0),
        accumulator=AccumulatorConfig(char_threshold=5, tick_interval_seconds=0.01),
    )


@pytest.fixture
def factory(transport_factory):
    return transport_factory()


@pytest.fixture
def runtime(config, fake_auth_client, factory):
    return NarratorRuntime(config, auth_client=fake_auth_client, transport_factory=factory)


@pytest.fixture
def client(config, runtime):
    with TestClient(create_app(config, runtime)) as test_client:
        yield test_client


class TestInfoEndpoints:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "terminal-narrator"
        assert body["mode"] == "websocket"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_not_ready_while_disconnected(self, client):
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["state"] == "DISCONNECTED"
        assert response.json()["pipeline_running"] is True

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["state"] == "DISCONNECTED"
        assert body["authenticated"] is False
        assert body["fatal"] is False

    def test_metrics(self, client):
        body = client.get("/metrics").json()
        assert set(body) >= {"uptime_seconds", "stream", "decode", "pipeline", "narration_published"}
        assert body["stream"]["frames_received"] == 0

    def test_narration_empty(self, client):
        assert client.get("/narration").json() == []
        assert client.get("/narration", params={"limit": -1}).status_code == 422


class TestSessionEndpoints:
    def test_set_and_clear_session(self, client):
        assert client.post("/session", json={"session_id": "s1"}).json()["session_id"] == "s1"
        assert client.delete("/session").json()["session_id"] is None

    def test_empty_session_id_rejected(self, client):
        assert client.post("/session", json={"session_id": ""}).status_code == 422


class TestAuthEndpoints:
    def test_login(self, client):
        response = client.post("/auth/login", json={"username": "alice", "password": "secret"})
        assert response.status_code == 200
        assert response.json() == {"authenticated": True, "auth_required": True}
        assert client.get("/status").json()["authenticated"] is True

    def test_login_rejected(self, client):
        response = client.post("/auth/login", json={"username": "alice", "password": "nope"})
        assert response.status_code == 401

    def test_logout(self, client):
        client.post("/auth/login", json={"username": "alice", "password": "secret"})
        assert client.post("/auth/logout").json() == {"authenticated": False}
        assert client.get("/status").json()["authenticated"] is False

    def test_login_against_open_server(self, config, auth_client_factory, transport_factory):
        runtime = NarratorRuntime(
            config,
            auth_client=auth_client_factory(no_auth=True),
            transport_factory=transport_factory(),
        )
        with TestClient(create_app(config, runtime)) as client:
            response = client.post("/auth/login", json={"username": "alice", "password": "x"})

        assert response.status_code == 200
        assert response.json()["auth_required"] is False


class TestStreamLifecycle:
    """Connect, narrate and recover through the HTTP surface."""

    def test_connect_without_login_stops_until_login(self, client):
        client.post("/connect")
        status = poll_until(lambda: client.get("/status").json(), lambda s: s["fatal"])
        assert status["state"] == "DISCONNECTED"
        assert "login required" in status["error"]

        client.post("/auth/login", json={"username": "alice", "password": "secret"})
        poll_until(lambda: client.get("/ready"), lambda r: r.status_code == 200)

    def test_snapshots_become_narration(self, client, factory, make_snapshot):
        client.post("/auth/login", json={"username": "alice", "password": "secret"})
        client.post("/session", json={"session_id": "s1"})
        client.post("/connect")
        poll_until(lambda: client.get("/ready"), lambda r: r.status_code == 200)

        transport = factory.transports[-1]
        payload = build_envelope("s1", encode_snapshot(make_snapshot(["$ echo hello", "hello"])))
        client.portal.call(transport.push, payload)

        events = poll_until(lambda: client.get("/narration").json(), lambda e: len(e) == 1)
        assert events[0]["text"].startswith("$ echo hello\nhello")
        assert events[0]["reason"] == "size"

        metrics = client.get("/metrics").json()
        assert metrics["stream"]["snapshots_decoded"] == 1
        assert metrics["narration_published"] == 1

    def test_disconnect(self, client):
        client.post("/auth/login", json={"username": "alice", "password": "secret"})
        client.post("/connect")
        poll_until(lambda: client.get("/ready"), lambda r: r.status_code == 200)

        body = client.post("/disconnect").json()
        assert body["state"] == "DISCONNECTED"
        assert client.get("/ready").status_code == 503
