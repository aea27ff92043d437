"""
LIFX worker tests: tools against a fake client, and the JSON-RPC server.

No network, no subprocess.
"""

import json

import pytest

from lifx_mcp.client import LifxApiError, LifxClient
from lifx_mcp.protocol import INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR, TOOL_ERROR
from lifx_mcp.server import LifxMcpServer
from lifx_mcp.tools.registry import ToolRegistry, build_registry
from lifx_mcp.tools.selector import ResolveSelectorTool, match_names


LIGHTS = [
    {
        "id": "d073d5000001",
        "uuid": "u-1",
        "label": "Kitchen Light",
        "connected": True,
        "power": "on",
        "brightness": 0.5,
        "color": {"hue": 0, "saturation": 0, "kelvin": 3500},
        "group": {"id": "g1", "name": "Kitchen"},
        "location": {"id": "l1", "name": "Home"},
    },
    {
        "id": "d073d5000002",
        "uuid": "u-2",
        "label": "Bedside",
        "connected": True,
        "power": "off",
        "brightness": 1.0,
        "color": {"hue": 120, "saturation": 1, "kelvin": 3500},
        "group": {"id": "g2", "name": "Bedroom"},
        "location": {"id": "l1", "name": "Home"},
    },
]


class FakeLifxClient:
    def __init__(self, lights=None, fail_with=None):
        self.lights = LIGHTS if lights is None else lights
        self.fail_with = fail_with
        self.calls = []

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def list_lights(self, selector="all"):
        self.calls.append(("list_lights", selector))
        return self.lights

    def set_state(self, selector, payload):
        self.calls.append(("set_state", selector, payload))
        self._maybe_fail()
        return {"results": [{"id": light["id"], "status": "ok"} for light in self.lights]}

    def toggle(self, selector, duration=1.0):
        self.calls.append(("toggle", selector, duration))
        self._maybe_fail()
        return {"results": [{"id": "d073d5000001", "status": "ok"}]}

    def effect(self, selector, kind, payload):
        self.calls.append(("effect", selector, kind, payload))
        self._maybe_fail()
        return {"results": [{"id": "d073d5000001", "status": "ok"}]}


def rpc(server, method, params=None, msg_id=1):
    message = {"jsonrpc": "2.0", "id": msg_id, "method": method}
    if params is not None:
        message["params"] = params
    return server.handle_line(json.dumps(message).encode("utf-8"))


def call_tool(server, name, arguments):
    return rpc(server, "tools/call", {"name": name, "arguments": arguments})


@pytest.fixture
def client():
    return FakeLifxClient()


@pytest.fixture
def server(client):
    return LifxMcpServer(build_registry(client))


# --- Registry ---

def test_registry_has_the_full_tool_surface(client):
    registry = build_registry(client)
    assert registry.names() == [
        "list_lights",
        "set_light_state",
        "toggle_lights",
        "set_brightness",
        "set_color",
        "breathe_effect",
        "pulse_effect",
        "resolve_selector",
    ]


def test_registry_rejects_duplicate_names(client):
    registry = ToolRegistry()
    registry.register(ResolveSelectorTool(client))
    with pytest.raises(ValueError):
        registry.register(ResolveSelectorTool(client))


# --- Protocol ---

def test_initialize_advertises_tools(server):
    response = rpc(server, "initialize", {"protocolVersion": "2024-11-05"})
    assert response["id"] == 1
    assert response["result"]["protocolVersion"] == "2024-11-05"
    assert "tools" in response["result"]["capabilities"]


def test_notifications_get_no_response(server):
    line = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}).encode()
    assert server.handle_line(line) is None


def test_tools_list_has_schemas(server):
    tools = rpc(server, "tools/list")["result"]["tools"]
    by_name = {t["name"]: t for t in tools}
    assert by_name["set_color"]["inputSchema"]["required"] == ["selector", "color"]
    assert by_name["list_lights"]["description"]


def test_parse_error(server):
    response = server.handle_line(b"{not json")
    assert response["error"]["code"] == PARSE_ERROR
    assert response["id"] is None


def test_wrong_version_is_invalid_request(server):
    response = server.handle_line(b'{"jsonrpc":"1.0","id":5,"method":"ping"}')
    assert response["error"]["code"] == INVALID_REQUEST
    assert response["id"] == 5


def test_unknown_method(server):
    assert rpc(server, "resources/list")["error"]["code"] == METHOD_NOT_FOUND


def test_unknown_tool(server):
    response = call_tool(server, "explode", {})
    assert response["error"]["code"] == METHOD_NOT_FOUND
    assert response["error"]["message"] == "Unknown tool: explode"


def test_missing_required_param_is_invalid_params(server, client):
    response = call_tool(server, "set_color", {"selector": "all"})
    assert response["error"]["code"] == INVALID_PARAMS
    assert "color" in response["error"]["message"]
    assert client.calls == []


# --- Tools ---

def test_list_lights_summarizes(server):
    result = call_tool(server, "list_lights", {})["result"]
    output = result["structuredContent"]
    assert output["count"] == 2
    assert output["available_groups"] == ["Kitchen", "Bedroom"]
    assert output["available_labels"] == ["Kitchen Light", "Bedside"]
    assert output["lights"][0]["color"]["brightness"] == 0.5
    assert json.loads(result["content"][0]["text"]) == output


def test_set_light_state_payload(server, client):
    output = call_tool(server, "set_light_state", {"selector": "group:Kitchen", "power": "on"})["result"]["structuredContent"]
    assert client.calls == [("set_state", "group:Kitchen", {"power": "on", "duration": 1.0})]
    assert output["message"] == "Successfully updated 2 lights"


def test_set_brightness_message(server):
    output = call_tool(server, "set_brightness", {"selector": "all", "brightness": 0.25})["result"]["structuredContent"]
    assert output["message"] == "Successfully set brightness to 25% for 2 lights"


def test_toggle_passes_duration(server, client):
    call_tool(server, "toggle_lights", {"selector": "all", "duration": 3})
    assert client.calls == [("toggle", "all", 3)]


def test_effect_payload(server, client):
    output = call_tool(server, "pulse_effect", {
        "selector": "all",
        "color": "blue",
        "from_color": "red",
        "cycles": 3,
    })["result"]["structuredContent"]

    _, selector, kind, payload = client.calls[0]
    assert (selector, kind) == ("all", "pulse")
    assert payload == {"color": "blue", "period": 1.0, "cycles": 3, "persist": False, "from_color": "red"}
    assert output["message"] == "Successfully applied pulse effect to 1 lights"


def test_not_found_lists_available_selectors():
    client = FakeLifxClient(fail_with=LifxApiError("Could not find light", status=404))
    server = LifxMcpServer(build_registry(client))

    response = call_tool(server, "set_color", {"selector": "group:Garage", "color": "red"})
    message = response["error"]["message"]
    assert response["error"]["code"] == TOOL_ERROR
    assert 'Could not find light with selector "group:Garage"' in message
    assert "Available groups: [Kitchen, Bedroom]" in message
    assert "Available labels: [Kitchen Light, Bedside]" in message


def test_other_api_errors_are_reported_verbatim():
    client = FakeLifxClient(fail_with=LifxApiError("Invalid token", status=401))
    server = LifxMcpServer(build_registry(client))

    response = call_tool(server, "toggle_lights", {"selector": "all"})
    assert response["error"]["code"] == TOOL_ERROR
    assert response["error"]["message"] == "Failed to toggle lights: Invalid token"


def test_crashing_tool_does_not_take_the_server_down():
    class ExplodingClient(FakeLifxClient):
        def toggle(self, selector, duration=1.0):
            raise RuntimeError("kaboom")

    server = LifxMcpServer(build_registry(ExplodingClient()))
    response = call_tool(server, "toggle_lights", {"selector": "all"})
    assert response["error"]["code"] == TOOL_ERROR
    assert "kaboom" in response["error"]["message"]
    assert rpc(server, "ping", msg_id=2) == {"jsonrpc": "2.0", "id": 2, "result": {}}


def test_resolve_selector(server):
    output = call_tool(server, "resolve_selector", {"name": "kitchen"})["result"]["structuredContent"]
    assert output["recommendation"] == "group:Kitchen"
    assert [s["match_type"] for s in output["suggestions"]] == ["exact", "partial"]


def test_resolve_selector_no_match(server):
    output = call_tool(server, "resolve_selector", {"name": "garage"})["result"]["structuredContent"]
    assert output["suggestions"] == []
    assert output["recommendation"] is None
    assert "Available groups" in output["help"]


def test_match_names_exact_before_partial():
    suggestions = match_names("bed", ["Bedroom"], ["Bed"])
    assert [s["selector"] for s in suggestions] == ["label:Bed", "group:Bedroom"]


# --- Client ---

def test_selector_is_url_quoted():
    client = LifxClient("token", base_url="http://lifx.test/v1/")
    assert client._url("label:Kitchen Light", "/state") == "http://lifx.test/v1/lights/label:Kitchen%20Light/state"
    assert client._url("group:A,group:B") == "http://lifx.test/v1/lights/group:A,group:B"


def test_not_found_detection():
    assert LifxApiError("x", status=404).not_found
    assert LifxApiError("Could not find selector").not_found
    assert not LifxApiError("Unauthorized", status=401).not_found
