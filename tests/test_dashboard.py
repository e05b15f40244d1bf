"""Tests for the demo checkout service (fault injection, logs, events)."""

import pytest
from fastapi.testclient import TestClient

# Import app and reset state so tests are isolated
from dashboard.app import app, reset_demo_state


@pytest.fixture(autouse=True)
def _reset_demo():
    reset_demo_state()
    yield
    reset_demo_state()


@pytest.fixture
def client():
    return TestClient(app)


def test_healthy_by_default(client):
    assert client.get("/users").status_code == 200
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/bugs/status").json() == {"healthy": True, "active_bugs": []}


def test_inject_breaks_only_its_endpoint(client):
    r = client.post("/bugs/inject", json={"bug": "users_500"})
    assert r.status_code == 200
    assert r.json()["active_bugs"] == ["users_500"]

    assert client.get("/users").status_code == 500
    assert client.get("/").status_code == 200
    assert client.get("/health").json()["status"] == "degraded"
    assert client.get("/bugs/status").json() == {"healthy": False, "active_bugs": ["users_500"]}


def test_health_503_fault(client):
    client.post("/bugs/inject", json={"bug": "health_503"})
    assert client.get("/health").status_code == 503


def test_unknown_bug_rejected(client):
    r = client.post("/bugs/inject", json={"bug": "disk_full"})
    assert r.status_code == 400
    assert client.get("/bugs/status").json()["healthy"] is True


def test_clear_restores_service(client):
    client.post("/bugs/inject", json={"bug": "users_500"})
    client.post("/bugs/inject", json={"bug": "root_500"})
    r = client.post("/bugs/clear")
    assert r.json() == {"ok": True, "cleared": ["root_500", "users_500"]}
    assert client.get("/users").status_code == 200
    assert client.get("/bugs/status").json()["healthy"] is True


def test_logs_record_failures(client):
    client.post("/bugs/inject", json={"bug": "users_500"})
    client.get("/users")
    client.get("/users")
    r = client.get("/logs")
    assert r.status_code == 200
    lines = r.text.splitlines()
    assert " WARN Fault injected: users_500 on /users" in lines[0]
    assert sum(" ERROR GET /users failed: injected fault users_500" in line for line in lines) == 2


def test_events_record_injection_and_clear(client):
    client.post("/bugs/inject", json={"bug": "users_500"})
    client.post("/bugs/clear")
    events = client.get("/events").json()["events"]
    assert [e["type"] for e in events] == ["FaultInjected", "Restarted"]
    assert events[0]["target"] == "checkout"
    assert events[0]["timestamp"]
