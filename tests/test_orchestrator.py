"""
Request orchestration tests.

Real supervisor and fake worker process; the LLM is a scripted ChatSession.
"""

import json

import pytest

from conftest import LIFX_KEY, fake_worker_command
from llm.langchain_adapter import ModelTurn
from llm.prompts import SystemPrompts
from mcp_client.correlator import CallCorrelator
from mcp_client.supervisor import ProcessSupervisor
from orchestration.admission import ConcurrencyGate
from orchestration.orchestrator import RequestOrchestrator
from orchestration.state import RequestContext, RequestState
from schemas.errors import ConcurrencyExceeded, InitializationFailure, ModelError, SpawnError


PROMPTS = SystemPrompts(restrictive="Only lights.", general="Anything.")


class ScriptedChat:
    """Plays back a list of ModelTurns and records what it was told."""

    def __init__(self, turns, **kwargs):
        self.turns = list(turns)
        self.kwargs = kwargs
        self.user_messages = []
        self.tool_results = []

    def add_user(self, text):
        self.user_messages.append(text)

    async def next_turn(self):
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    def add_tool_result(self, call_id, content, is_error=False):
        self.tool_results.append((call_id, json.loads(content), is_error))


class ChatFactory:
    def __init__(self, turns):
        self.turns = turns
        self.sessions = []

    def __call__(self, **kwargs):
        session = ScriptedChat(self.turns, **kwargs)
        self.sessions.append(session)
        return session


def tool_turn(*calls, input_tokens=10, output_tokens=5):
    return ModelTurn(
        text="",
        tool_calls=[{"id": f"call_{i}", "name": name, "args": args} for i, (name, args) in enumerate(calls)],
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        stop_reason="tool_calls",
    )


def final_turn(text="Done.", input_tokens=20, output_tokens=8):
    return ModelTurn(text=text, input_tokens=input_tokens, output_tokens=output_tokens, stop_reason="stop")


class CountingSupervisor(ProcessSupervisor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.terminated = []

    async def terminate(self, handle):
        if handle is not None:
            self.terminated.append(handle)
        await super().terminate(handle)


def build(mode="echo", turns=(), max_active=5, log_sink=None, **kwargs):
    supervisor = CountingSupervisor(log_sink, command=fake_worker_command(mode), kill_grace=1)
    gate = ConcurrencyGate(max_active, log_sink=log_sink)
    factory = ChatFactory(list(turns))
    orchestrator = RequestOrchestrator(
        supervisor=supervisor,
        correlator=CallCorrelator(log_sink, method_timeout=kwargs.pop("method_timeout", 5), init_timeout=2),
        gate=gate,
        log_sink=log_sink,
        chat_factory=factory,
        prompts=PROMPTS,
        **kwargs,
    )
    return orchestrator, supervisor, gate, factory


# --- State machine ---

def test_request_context_rejects_illegal_transitions():
    ctx = RequestContext(request_id="r", session_id="s", kind="tool")
    ctx.advance(RequestState.SPAWNING)
    with pytest.raises(ValueError):
        ctx.advance(RequestState.COMPLETED)
    ctx.advance(RequestState.TEARING_DOWN)
    ctx.advance(RequestState.FAILED)
    assert ctx.is_terminal
    with pytest.raises(ValueError):
        ctx.advance(RequestState.TEARING_DOWN)


# --- Direct control ---

@pytest.mark.asyncio
async def test_run_tool_happy_path(log_sink):
    orchestrator, supervisor, gate, _ = build(log_sink=log_sink)

    run = await orchestrator.run_tool(LIFX_KEY, "alice", "set_color", {"selector": "all", "color": "red"})

    assert run.tool == "set_color"
    assert run.result["arguments"] == {"selector": "all", "color": "red"}
    assert run.states == [
        RequestState.ADMITTED,
        RequestState.SPAWNING,
        RequestState.INITIALIZING,
        RequestState.EXECUTING,
        RequestState.TEARING_DOWN,
        RequestState.COMPLETED,
    ]
    assert len(supervisor.terminated) == 1
    assert supervisor.live_count == 0
    assert gate.active == 0


@pytest.mark.asyncio
async def test_run_tool_error_still_tears_down(log_sink):
    orchestrator, supervisor, gate, _ = build("tool_error", log_sink=log_sink)

    with pytest.raises(Exception) as exc_info:
        await orchestrator.run_tool(LIFX_KEY, "alice", "set_color", {"selector": "all", "color": "red"})

    assert exc_info.value.code == "TOOL_ERROR"
    assert len(supervisor.terminated) == 1
    assert supervisor.live_count == 0
    assert gate.active == 0
    assert any(e.message == "Request tool -> failed" for e in log_sink.query("alice"))


@pytest.mark.asyncio
async def test_spawn_failure_releases_slot(log_sink):
    orchestrator, supervisor, gate, _ = build(log_sink=log_sink)
    supervisor._command = ["/nonexistent/lifx-worker"]

    with pytest.raises(SpawnError):
        await orchestrator.run_tool(LIFX_KEY, "alice", "list_lights", {})
    assert gate.active == 0
    assert supervisor.terminated == []


@pytest.mark.asyncio
async def test_silent_worker_is_initialization_failure(log_sink):
    orchestrator, supervisor, gate, _ = build("silent", log_sink=log_sink)

    with pytest.raises(InitializationFailure):
        await orchestrator.run_tool(LIFX_KEY, "alice", "list_lights", {})
    assert len(supervisor.terminated) == 1
    assert supervisor.live_count == 0
    assert gate.active == 0


@pytest.mark.asyncio
async def test_full_gate_rejects_before_spawning(log_sink):
    orchestrator, supervisor, gate, _ = build(max_active=1, log_sink=log_sink)
    gate.acquire()

    with pytest.raises(ConcurrencyExceeded):
        await orchestrator.run_tool(LIFX_KEY, "alice", "list_lights", {})

    assert supervisor.terminated == []
    gate.release()
    assert gate.active == 0


# --- Chat ---

@pytest.mark.asyncio
async def test_chat_runs_tools_and_accumulates_usage(log_sink):
    orchestrator, supervisor, gate, factory = build(
        turns=[
            tool_turn(("list_lights", {}), ("set_color", {"selector": "all", "color": "blue"})),
            final_turn("Your lights are blue."),
        ],
        log_sink=log_sink,
    )

    run = await orchestrator.run_chat(LIFX_KEY, "alice", "make it blue", "sk-test", max_tokens=300)

    assert run.response == "Your lights are blue."
    assert run.rounds == 1
    assert [c.name for c in run.tool_calls] == ["list_lights", "set_color"]
    assert run.usage.input_tokens == 30
    assert run.usage.output_tokens == 13
    assert run.stop_reason == "stop"
    assert run.states[-1] is RequestState.COMPLETED

    session = factory.sessions[0]
    assert session.kwargs["system_prompt"] == "Only lights."
    assert session.kwargs["max_tokens"] == 300
    assert [t["function"]["name"] for t in session.kwargs["tools"]] == ["list_lights", "set_color"]
    assert session.user_messages == ["make it blue"]
    assert [r[0] for r in session.tool_results] == ["call_0", "call_1"]
    assert session.tool_results[1][1]["arguments"] == {"selector": "all", "color": "blue"}

    assert len(supervisor.terminated) == 1
    assert gate.active == 0


@pytest.mark.asyncio
async def test_chat_feeds_tool_errors_back_to_model(log_sink):
    orchestrator, _, _, factory = build(
        "tool_error",
        turns=[tool_turn(("set_color", {"selector": "group:Garage", "color": "red"})), final_turn("No garage.")],
        log_sink=log_sink,
    )

    run = await orchestrator.run_chat(LIFX_KEY, "alice", "garage red", "sk-test", restrictive=False)

    assert run.response == "No garage."
    assert run.tool_calls[0].success is False
    call_id, content, is_error = factory.sessions[0].tool_results[0]
    assert is_error is True
    assert content["error"] == "Light not found"
    assert factory.sessions[0].kwargs["system_prompt"] == "Anything."


@pytest.mark.asyncio
async def test_chat_stops_at_round_limit(log_sink):
    orchestrator, _, gate, _ = build(
        turns=[tool_turn(("list_lights", {})) for _ in range(3)],
        max_tool_rounds=2,
        log_sink=log_sink,
    )

    run = await orchestrator.run_chat(LIFX_KEY, "alice", "loop forever", "sk-test")

    assert run.rounds == 2
    assert len(run.tool_calls) == 2
    assert run.stop_reason == "max_tool_rounds"
    assert gate.active == 0


@pytest.mark.asyncio
async def test_model_error_tears_down(log_sink):
    orchestrator, supervisor, gate, _ = build(turns=[ModelError("LLM API error: 401")], log_sink=log_sink)

    with pytest.raises(ModelError):
        await orchestrator.run_chat(LIFX_KEY, "alice", "hello", "sk-bad")

    assert len(supervisor.terminated) == 1
    assert supervisor.live_count == 0
    assert gate.active == 0


@pytest.mark.asyncio
async def test_chat_logs_stay_in_session(log_sink):
    orchestrator, _, _, _ = build(turns=[final_turn()], log_sink=log_sink)
    await orchestrator.run_chat(LIFX_KEY, "alice", "hi", "sk-test")

    assert any(e.message == "Chat completed" for e in log_sink.query("alice"))
    assert not any(e.message == "Chat completed" for e in log_sink.query("bob"))
