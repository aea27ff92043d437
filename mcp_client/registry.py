"""
Tool Registry

Which tools a client may call directly, and how MCP tool definitions
are presented to the model.

DESIGN RULES:
- Direct control is an explicit allowlist (no pass-through of arbitrary names)
- The worker is the single source of truth for tool schemas
"""

from typing import Any, Dict, FrozenSet, Iterable, List


DIRECT_ACTIONS: FrozenSet[str] = frozenset({
    "list_lights",
    "set_light_state",
    "toggle_lights",
    "set_brightness",
    "set_color",
    "breathe_effect",
    "pulse_effect",
    "resolve_selector",
})


def is_allowed_action(action: str) -> bool:
    """Check whether a tool may be called through the direct-control route."""
    return action in DIRECT_ACTIONS


def to_llm_tool(tool: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert one MCP tool definition into an OpenAI function tool.

    Args:
        tool: {"name", "description", "inputSchema"} from tools/list

    Returns:
        {"type": "function", "function": {...}} accepted by bind_tools
    """
    schema = dict(tool.get("inputSchema") or {"type": "object", "properties": {}})
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return {
        "type": "function",
        "function": {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "parameters": schema,
        },
    }


def to_llm_tools(tools: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [to_llm_tool(t) for t in tools if t.get("name")]
