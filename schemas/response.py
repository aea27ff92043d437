from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from orchestration.state import ChatRunResult, ToolCallRecord, ToolRunResult, Usage


class ErrorResponse(BaseModel):
    """
    Error body for every failed request.

    details is only present in development mode.
    """
    error: str
    code: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class LifxControlResponse(BaseModel):
    """API response for direct tool invocation."""
    success: bool = True
    action: str
    result: Dict[str, Any] = Field(default_factory=dict)
    request_id: str

    @classmethod
    def from_run(cls, run: ToolRunResult) -> "LifxControlResponse":
        return cls(action=run.tool, result=run.result, request_id=run.request_id)


class ChatResponse(BaseModel):
    """API response for LLM-mediated control."""
    success: bool = True
    response: str = Field(..., description="Final model answer")
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    rounds: int = 0
    stop_reason: Optional[str] = None
    request_id: str

    @classmethod
    def from_run(cls, run: ChatRunResult) -> "ChatResponse":
        return cls(
            response=run.response,
            tool_calls=run.tool_calls,
            usage=run.usage,
            rounds=run.rounds,
            stop_reason=run.stop_reason,
            request_id=run.request_id,
        )


class SessionInfoResponse(BaseModel):
    session_id: str
    client_ip: Optional[str] = None
    requests_used: int
    requests_remaining: int
    request_limit: int
    created_at: Optional[str] = None
    session_age_ms: Optional[int] = None
    is_active: bool


class LogEntryOut(BaseModel):
    timestamp: str
    level: str
    message: str
    meta: Dict[str, Any] = Field(default_factory=dict)


class LogsResponse(BaseModel):
    """Session-scoped view of one log store."""
    store: str
    session_id: str
    count: int
    stats: Dict[str, int] = Field(default_factory=dict)
    logs: List[LogEntryOut] = Field(default_factory=list)
