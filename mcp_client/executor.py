"""
MCP Tool Executor

Runs tool calls requested by the model against a live worker.

DESIGN RULES:
- Per-call failures (tool error, timeout) become a failed ToolResult
  that is fed back to the model
- Stream-level failures (protocol error, worker exit) propagate
- Tools return data, NOT user-facing strings
"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from mcp_client.correlator import CallCorrelator, content_text
from mcp_client.supervisor import WorkerHandle
from schemas.errors import MethodTimeout, ToolExecutionError


class ToolResult(BaseModel):
    """Structured result of one tool call."""
    tool_name: str = Field(..., description="Tool that was called")
    output: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structured output from the tool",
    )
    success: bool = Field(default=True)
    error: Optional[str] = Field(default=None, description="Error message if the call failed")
    code: Optional[str] = Field(default=None, description="Gateway error code if the call failed")

    @classmethod
    def ok(cls, tool_name: str, output: Dict[str, Any]) -> "ToolResult":
        return cls(tool_name=tool_name, output=output, success=True)

    @classmethod
    def fail(cls, tool_name: str, error: str, code: Optional[str] = None) -> "ToolResult":
        return cls(tool_name=tool_name, output={}, success=False, error=error, code=code)

    def to_model_content(self) -> str:
        """Serialize for a tool message."""
        if self.success:
            return json.dumps(self.output)
        return json.dumps({"error": self.error, "code": self.code})


def decode_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract structured output from a tools/call result.

    Prefers structuredContent; falls back to parsing the text content as JSON.
    """
    structured = result.get("structuredContent")
    if isinstance(structured, dict):
        return structured

    text = content_text(result)
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"text": text}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


class MCPToolExecutor:
    """Executes tool calls for one request on its own worker."""

    def __init__(self, correlator: CallCorrelator, handle: WorkerHandle, session_id: Optional[str] = None):
        self._correlator = correlator
        self._handle = handle
        self._session_id = session_id

    async def execute(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Execute one tool call.

        Raises:
            ProtocolError: The worker's stream is unusable (includes WorkerExited)
        """
        try:
            result = await self._correlator.call(
                self._handle,
                tool_name,
                arguments or {},
                session_id=self._session_id,
            )
        except (ToolExecutionError, MethodTimeout) as e:
            return ToolResult.fail(tool_name, e.message, code=e.code)
        return ToolResult.ok(tool_name, decode_result(result))
