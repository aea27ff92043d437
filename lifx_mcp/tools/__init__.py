# LIFX Tools Package
from lifx_mcp.tools.base import Tool, ToolResult
from lifx_mcp.tools.registry import ToolRegistry, build_registry

__all__ = ["Tool", "ToolResult", "ToolRegistry", "build_registry"]
