"""
Tool Base Interface

Canonical Tool contract for the LIFX MCP worker.
Tools return structured output plus a one-line summary in "message".
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from lifx_mcp.client import LifxClient


class ToolResult(BaseModel):
    """
    Structured result from tool execution.

    Successful output always carries a "message" summary string.
    """
    output: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structured output from the tool",
    )
    success: bool = Field(
        default=True,
        description="Whether the tool executed successfully",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message if execution failed",
    )

    @classmethod
    def ok(cls, output: Dict[str, Any]) -> "ToolResult":
        """Factory for successful results."""
        return cls(output=output, success=True)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        """Factory for failed results."""
        return cls(output={}, success=False, error=error)


SELECTOR_PROPERTY = {
    "type": "string",
    "description": (
        'Light selector. Use "all" for all lights, "group:GroupName" for groups, '
        '"label:LightLabel" for specific lights, or "id:lightId" for a device.'
    ),
    "examples": ["all", "group:Bedroom", "label:Kitchen Light", "id:d073d58529b9"],
}

DURATION_PROPERTY = {
    "type": "number",
    "minimum": 0,
    "description": "Transition time in seconds (default 1.0)",
}


class Tool(ABC):
    """
    Abstract base class for all LIFX tools.

    Implement `run()` to define tool behavior.
    """

    def __init__(self, client: LifxClient):
        self.client = client

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool identifier."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for LLM context."""
        pass

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    @abstractmethod
    def run(self, input: Dict[str, Any]) -> ToolResult:
        """
        Execute the tool with given input.

        Args:
            input: Dictionary matching input_schema

        Returns:
            ToolResult with structured output
        """
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Serialize tool definition for tools/list."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def result_count(response: Dict[str, Any]) -> int:
    return len(response.get("results") or [])
