import json
import urllib.request

import pytest

from chat_relay.admin import AdminServer, create_admin_app


@pytest.fixture
def app(registry, make_session):
    for name in ("carol", "alice"):
        session, _ = make_session(name)
        registry.register(session)
    return create_admin_app(registry)


def test_health(app):
    response = app.test_client().get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "OK", "sessions": 2}


def test_sessions_are_sorted(app):
    assert app.test_client().get("/sessions").get_json() == {"sessions": ["alice", "carol"]}


def test_stats_snapshot(app, registry):
    registry.broadcast("alice: hi", exclude="alice")
    body = app.test_client().get("/stats").get_json()
    assert body["lines_delivered"] == 1
    assert body["write_failures"] == 0
    assert "uptime_sec" in body


def test_unknown_route_and_method(app):
    client = app.test_client()
    missing = client.get("/nope")
    assert missing.status_code == 404
    assert missing.get_json() == {"error": "Route not found"}

    wrong = client.post("/health")
    assert wrong.status_code == 405
    assert wrong.get_json() == {"error": "Method not allowed"}


def test_admin_server_serves_over_http(app):
    server = AdminServer(app, "127.0.0.1", 0)
    server.start()
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{server.port}/health", timeout=3) as response:
            assert json.loads(response.read()) == {"status": "OK", "sessions": 2}
    finally:
        server.stop()
