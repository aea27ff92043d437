"""
Tool Registry

Explicit tool registration for the worker.
No auto-discovery - all tools must be registered explicitly.

DESIGN RULES:
- Tools are registered explicitly
- Registry is the single source of truth for tools/list
- Names are unique
"""

from typing import Dict, List, Optional

from lifx_mcp.client import LifxClient
from lifx_mcp.tools.base import Tool


class ToolRegistry:
    """Name -> Tool lookup, in registration order."""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: A tool with the same name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list_all(self) -> List[Tool]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# --- Tool Registration Bootstrap ---

def build_registry(client: LifxClient) -> ToolRegistry:
    """Register the LIFX tool surface against one client."""
    from lifx_mcp.tools.effects import BreatheEffectTool, PulseEffectTool
    from lifx_mcp.tools.lights import (
        ListLightsTool,
        SetBrightnessTool,
        SetColorTool,
        SetLightStateTool,
        ToggleLightsTool,
    )
    from lifx_mcp.tools.selector import ResolveSelectorTool

    registry = ToolRegistry()
    for tool_cls in (
        ListLightsTool,
        SetLightStateTool,
        ToggleLightsTool,
        SetBrightnessTool,
        SetColorTool,
        BreatheEffectTool,
        PulseEffectTool,
        ResolveSelectorTool,
    ):
        registry.register(tool_cls(client))
    return registry
