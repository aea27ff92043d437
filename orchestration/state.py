"""
Request State

State machine and result models for one control request.

DESIGN RULES:
- admitted -> spawning -> initializing -> executing -> tearing_down -> completed | failed
- Any live state may jump straight to tearing_down
- Terminal states accept no further transitions
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RequestState(str, Enum):
    ADMITTED = "admitted"
    SPAWNING = "spawning"
    INITIALIZING = "initializing"
    EXECUTING = "executing"
    TEARING_DOWN = "tearing_down"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED = {
    RequestState.ADMITTED: {RequestState.SPAWNING, RequestState.TEARING_DOWN},
    RequestState.SPAWNING: {RequestState.INITIALIZING, RequestState.TEARING_DOWN},
    RequestState.INITIALIZING: {RequestState.EXECUTING, RequestState.TEARING_DOWN},
    RequestState.EXECUTING: {RequestState.TEARING_DOWN},
    RequestState.TEARING_DOWN: {RequestState.COMPLETED, RequestState.FAILED},
    RequestState.COMPLETED: set(),
    RequestState.FAILED: set(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Transition(BaseModel):
    state: RequestState
    at: datetime = Field(default_factory=_now)


class RequestContext(BaseModel):
    """
    Mutable state of one request (internal use).

    Owns the transition history; the orchestrator drives it.
    """
    request_id: str
    session_id: str
    kind: str = Field(..., description="'tool' or 'chat'")
    state: RequestState = RequestState.ADMITTED
    history: List[Transition] = Field(default_factory=lambda: [Transition(state=RequestState.ADMITTED)])
    error_code: Optional[str] = None

    def advance(self, state: RequestState) -> None:
        if state not in _ALLOWED[self.state]:
            raise ValueError(f"Illegal request transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(Transition(state=state))

    @property
    def is_terminal(self) -> bool:
        return self.state in (RequestState.COMPLETED, RequestState.FAILED)

    @property
    def states(self) -> List[RequestState]:
        return [t.state for t in self.history]

    def duration_ms(self) -> float:
        return (self.history[-1].at - self.history[0].at).total_seconds() * 1000


class Usage(BaseModel):
    """Token counters accumulated across model turns."""
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self.input_tokens += input_tokens or 0
        self.output_tokens += output_tokens or 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ToolCallRecord(BaseModel):
    """One tool call made during a chat request."""
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None


class ToolRunResult(BaseModel):
    """Outcome of a direct tool invocation."""
    request_id: str
    tool: str
    result: Dict[str, Any] = Field(default_factory=dict)
    states: List[RequestState] = Field(default_factory=list)


class ChatRunResult(BaseModel):
    """Outcome of an LLM-mediated request."""
    request_id: str
    response: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    rounds: int = 0
    stop_reason: Optional[str] = None
    states: List[RequestState] = Field(default_factory=list)
