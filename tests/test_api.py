"""
HTTP surface tests.

Full app with the fake worker process and a scripted chat model.
"""

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.dependencies import build_container
from app.main import create_app
from conftest import LIFX_KEY, LLM_KEY, fake_worker_command
from llm.langchain_adapter import ModelTurn


ACCESS_KEY = "LifxDemo"


class OneShotChat:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.turns = [
            ModelTurn(
                text="",
                tool_calls=[{"id": "call_0", "name": "list_lights", "args": {}}],
                input_tokens=12,
                output_tokens=4,
            ),
            ModelTurn(text="You have lights.", input_tokens=30, output_tokens=6, stop_reason="stop"),
        ]

    def add_user(self, text):
        pass

    async def next_turn(self):
        return self.turns.pop(0)

    def add_tool_result(self, call_id, content, is_error=False):
        pass


def make_settings(**overrides):
    values = dict(
        environment="development",
        worker_command=fake_worker_command("echo"),
        kill_grace=1.0,
        session_request_limit=100,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def gateway():
    """(client, container) factory with settings overrides."""
    clients = []

    def _make(**overrides):
        settings = make_settings(**overrides)
        container = build_container(settings, chat_factory=OneShotChat)
        client = TestClient(create_app(settings, container))
        client.__enter__()
        clients.append(client)
        return client, container

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


def headers(session_id="alice", key=ACCESS_KEY):
    values = {"x-session-id": session_id}
    if key is not None:
        values["x-demo-key"] = key
    return values


# --- Public endpoints ---

def test_health_and_status(gateway):
    client, _ = gateway()
    assert client.get("/health").json()["status"] == "healthy"

    status = client.get("/api/status").json()
    assert status["status"] == "online"
    assert status["ready"] is True
    assert status["active_workers"] == 0


def test_info_lists_endpoints(gateway):
    client, _ = gateway(session_request_limit=7)
    info = client.get("/api/info").json()
    assert "POST /api/chat" in info["endpoints"]
    assert info["rate_limit"]["requests_per_session"] == 7


def test_unknown_route_is_not_found(gateway):
    client, _ = gateway()
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
    assert response.headers["X-Request-ID"]


# --- Access control ---

def test_missing_access_key_is_unauthorized(gateway):
    client, container = gateway()
    response = client.post("/api/lifx/list_lights", headers=headers(key=None), json={"lifxApiKey": LIFX_KEY})

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"

    entries = [e for e in container.log_sink.query(None) if e.message == "Unauthorized access attempt"]
    assert entries[0].meta["demo_key_status"] == "[MISSING]"


def test_wrong_access_key_is_unauthorized(gateway):
    client, container = gateway()
    response = client.get("/api/session-info", headers=headers(key="guess"))
    assert response.status_code == 401
    entries = [e for e in container.log_sink.query(None) if e.message == "Unauthorized access attempt"]
    assert entries[0].meta["demo_key_status"] == "[PROVIDED]"


def test_missing_session_id(gateway):
    client, _ = gateway()
    response = client.post("/api/lifx/list_lights", headers={"x-demo-key": ACCESS_KEY}, json={"lifxApiKey": LIFX_KEY})
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_SESSION_ID"


# --- Direct control ---

def test_direct_control(gateway):
    client, container = gateway()
    response = client.post(
        "/api/lifx/set_color",
        headers=headers(),
        json={"lifxApiKey": LIFX_KEY, "selector": "all", "color": "red"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["action"] == "set_color"
    assert body["result"]["arguments"] == {"selector": "all", "color": "red"}
    assert body["request_id"] == response.headers["X-Request-ID"]
    assert response.headers["X-Requests-Used"] == "1"
    assert response.headers["X-Requests-Remaining"] == "99"
    assert container.gate.active == 0
    assert container.supervisor.live_count == 0


def test_short_lifx_key(gateway):
    client, _ = gateway()
    response = client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": "short"})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_LIFX_KEY"


def test_action_outside_allowlist(gateway):
    client, _ = gateway()
    response = client.post("/api/lifx/rm_rf", headers=headers(), json={"lifxApiKey": LIFX_KEY})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_ACTION"


def test_tool_error_maps_to_bad_gateway(gateway):
    client, _ = gateway(worker_command=fake_worker_command("tool_error"))
    response = client.post(
        "/api/lifx/set_color",
        headers=headers(),
        json={"lifxApiKey": LIFX_KEY, "selector": "all", "color": "red"},
    )
    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "TOOL_ERROR"
    assert body["error"] == "Light not found"


def test_busy_server_is_429(gateway):
    client, container = gateway(max_concurrent_mcp=1)
    container.gate.acquire()
    try:
        response = client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})
    finally:
        container.gate.release()

    assert response.status_code == 429
    assert response.json() == {
        "error": "Server busy, try again later",
        "code": "SERVER_BUSY",
        "request_id": response.headers["X-Request-ID"],
    }
    assert container.supervisor.live_count == 0


def test_session_limit(gateway):
    client, _ = gateway(session_request_limit=1)
    first = client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})
    second = client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["code"] == "SESSION_LIMIT"
    assert second.json()["details"] == {"requests_used": 1}

    # Another session is unaffected
    other = client.post("/api/lifx/list_lights", headers=headers("bob"), json={"lifxApiKey": LIFX_KEY})
    assert other.status_code == 200


def test_ip_limit(gateway):
    client, _ = gateway(ip_rate_limit_max=1)
    client.get("/api/session-info", headers=headers())
    first = client.post("/api/test/llm", headers=headers(), json={})
    second = client.post("/api/test/llm", headers=headers("bob"), json={})

    assert first.json()["code"] == "MISSING_LLM_KEY"
    assert second.status_code == 429
    assert second.json()["code"] == "IP_RATE_LIMIT"


# --- Chat ---

def test_chat(gateway):
    client, container = gateway()
    response = client.post(
        "/api/chat",
        headers=headers(),
        json={"llmApiKey": LLM_KEY, "lifxApiKey": LIFX_KEY, "message": "what lights do I have?"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "You have lights."
    assert body["rounds"] == 1
    assert body["tool_calls"][0]["name"] == "list_lights"
    assert body["usage"] == {"input_tokens": 42, "output_tokens": 10}
    assert container.gate.active == 0


@pytest.mark.parametrize("payload, code", [
    ({"lifxApiKey": LIFX_KEY, "message": "hi"}, "INVALID_LLM_KEY"),
    ({"llmApiKey": LLM_KEY, "lifxApiKey": LIFX_KEY, "message": "   "}, "INVALID_MESSAGE"),
    ({"llmApiKey": LLM_KEY, "lifxApiKey": LIFX_KEY, "message": "x" * 1001}, "INVALID_MESSAGE"),
    ({"llmApiKey": LLM_KEY, "lifxApiKey": LIFX_KEY, "message": "hi", "maxTokens": 10}, "INVALID_MAX_TOKENS"),
    ({"llmApiKey": LLM_KEY, "lifxApiKey": LIFX_KEY, "message": "hi", "maxTokens": "lots"}, "INVALID_REQUEST"),
])
def test_chat_input_validation(gateway, payload, code):
    client, container = gateway()
    response = client.post("/api/chat", headers=headers(), json=payload)
    assert response.status_code == 400
    assert response.json()["code"] == code
    assert container.supervisor.live_count == 0


def test_llm_connection_check(gateway, monkeypatch):
    import app.api.lighting as lighting

    seen = {}

    def fake_check(api_key, config):
        seen["key"] = api_key
        return {"success": True, "message": "LLM API connection successful", "model": config.model, "latency_ms": 5}

    monkeypatch.setattr(lighting, "check_connection", fake_check)
    client, _ = gateway()
    response = client.post("/api/test/llm", headers=headers(), json={"llmApiKey": LLM_KEY})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert seen["key"] == LLM_KEY


def test_llm_connection_failure_is_400(gateway, monkeypatch):
    import app.api.lighting as lighting

    monkeypatch.setattr(lighting, "check_connection", lambda key, config: {"success": False, "error": "bad key"})
    client, _ = gateway()
    response = client.post("/api/test/llm", headers=headers(), json={"llmApiKey": LLM_KEY})
    assert response.status_code == 400
    assert response.json()["error"] == "bad key"


# --- Sessions and logs ---

def test_session_info_and_clear(gateway):
    client, container = gateway()
    client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})

    info = client.get("/api/session-info", headers=headers()).json()
    assert info["session_id"] == "alice"
    assert info["requests_used"] == 1
    assert info["requests_remaining"] == 99

    cleared = client.post("/api/clear-session", headers=headers())
    assert cleared.status_code == 200
    assert container.log_sink.session_ids() == []

    again = client.post("/api/clear-session", headers=headers())
    assert again.status_code == 404
    assert again.json()["code"] == "SESSION_NOT_FOUND"


def test_cleared_session_id_is_not_visible_to_others(gateway):
    client, _ = gateway()
    secret = "alice-secret-sid"
    client.get("/api/session-info", headers=headers(secret))
    assert client.post("/api/clear-session", headers=headers(secret)).status_code == 200

    for store in ("backend", "mcp"):
        bob = client.get(f"/api/logs/{store}?limit=100", headers=headers("bob")).json()
        assert secret not in str(bob["logs"])


def test_unknown_log_level_returns_nothing(gateway):
    client, container = gateway()
    client.get("/api/session-info", headers=headers())
    container.log_sink.record("info", "fine thing", {"session_id": "alice"})

    body = client.get("/api/logs/backend?level=bogus", headers=headers()).json()
    assert body["count"] == 0


def test_logs_are_isolated_per_session(gateway):
    client, _ = gateway()
    client.post(
        "/api/lifx/set_color",
        headers=headers("alice"),
        json={"lifxApiKey": LIFX_KEY, "selector": "all", "color": "red"},
    )

    alice = client.get("/api/logs/backend?limit=100", headers=headers("alice")).json()
    bob = client.get("/api/logs/backend?limit=100", headers=headers("bob")).json()

    assert alice["session_id"] == "alice"
    assert any(e["message"] == "Direct LIFX control" for e in alice["logs"])
    assert not any(e["meta"].get("session_id") == "alice" for e in bob["logs"])

    alice_mcp = client.get("/api/logs/mcp", headers=headers("alice")).json()
    bob_mcp = client.get("/api/logs/mcp", headers=headers("bob")).json()
    assert any(e["message"] == "MCP stdout" for e in alice_mcp["logs"])
    assert not any(e["message"] == "MCP stdout" for e in bob_mcp["logs"])


def test_log_limit_is_capped(gateway):
    client, container = gateway(log_query_max=3)
    # Track the session first so "New session created" is not the newest entry
    client.get("/api/session-info", headers=headers())
    for i in range(10):
        container.log_sink.record("info", f"line {i}", {"session_id": "alice"})

    body = client.get("/api/logs/backend?limit=50", headers=headers()).json()
    assert body["count"] == 3
    assert body["logs"][-1]["message"] == "line 9"


def test_log_level_filter(gateway):
    client, container = gateway()
    client.get("/api/session-info", headers=headers())
    container.log_sink.record("error", "bad thing", {"session_id": "alice"})
    container.log_sink.record("info", "fine thing", {"session_id": "alice"})

    body = client.get("/api/logs/backend?level=error", headers=headers()).json()
    assert [e["message"] for e in body["logs"]] == ["bad thing"]


def test_logs_index(gateway):
    client, _ = gateway()
    body = client.get("/api/logs", headers=headers()).json()
    assert body["endpoints"]["mcp"] == "/api/logs/mcp"


def test_sweep_expires_sessions_and_their_logs(gateway):
    client, container = gateway(session_max_age=0)
    client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})
    assert "alice" in container.log_sink.session_ids()

    assert container.sweep() == ["alice"]
    assert container.sessions.info("alice") is None
    assert "alice" not in container.log_sink.session_ids()


def test_container_shares_one_state_store(gateway):
    client, container = gateway()
    client.post("/api/lifx/list_lights", headers=headers(), json={"lifxApiKey": LIFX_KEY})

    store = container.sessions._store
    assert store is container.ip_limiter._store
    # One session record and one IP window
    assert len(store) == 2
