"""
Request Orchestrator

Drives one control request through its Tool Process lifecycle.

Flow:
1. Take a concurrency slot
2. Spawn a worker holding the caller's LIFX credential
3. MCP handshake
4. Execute: one direct tool call, or the model/tool loop
5. Tear the worker down (always)

DESIGN RULES:
- The worker is scoped to the request: acquired at start, released on every path
- The concurrency slot is released exactly once
- Per-call tool failures in the chat loop go back to the model;
  protocol failures and worker exits abort the request
- Every state transition is logged, tagged with the session
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from mcp_client.correlator import CallCorrelator
from mcp_client.executor import MCPToolExecutor, decode_result
from mcp_client.registry import to_llm_tools
from mcp_client.supervisor import ProcessSupervisor, WorkerHandle
from observability.emitter import SessionLogger
from observability.sink import SessionLogSink
from orchestration.admission import ConcurrencyGate
from orchestration.state import (
    ChatRunResult,
    RequestContext,
    RequestState,
    ToolCallRecord,
    ToolRunResult,
    Usage,
)
from schemas.errors import GatewayError


class RequestOrchestrator:
    """
    The Engine.

    One instance per app; one RequestContext per request.
    """

    DEFAULT_MAX_TOOL_ROUNDS = 5

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        correlator: CallCorrelator,
        gate: ConcurrencyGate,
        log_sink: Optional[SessionLogSink] = None,
        chat_factory: Optional[Callable[..., Any]] = None,
        prompts: Optional[Any] = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ):
        """
        Initialize the orchestrator.

        Args:
            supervisor: Spawns and terminates Tool Processes
            correlator: JSON-RPC calls against a worker
            gate: Global concurrency cap
            log_sink: Session log sink (backend store)
            chat_factory: Creates a chat session (api_key, system_prompt, tools, max_tokens)
            prompts: SystemPrompts with restrictive/general variants
            max_tool_rounds: Upper bound on model/tool alternations per chat
        """
        self._supervisor = supervisor
        self._correlator = correlator
        self._gate = gate
        self._chat_factory = chat_factory
        self._prompts = prompts
        self._max_tool_rounds = max_tool_rounds
        self._log = SessionLogger(__name__, log_sink)

    # --- State machine ---

    def _admit(self, session_id: str, kind: str, request_id: Optional[str]) -> RequestContext:
        ctx = RequestContext(
            request_id=request_id or str(uuid.uuid4()),
            session_id=session_id,
            kind=kind,
        )
        self._log_transition(ctx)
        return ctx

    def _advance(self, ctx: RequestContext, state: RequestState) -> None:
        ctx.advance(state)
        self._log_transition(ctx)

    def _log_transition(self, ctx: RequestContext) -> None:
        level = "warning" if ctx.state is RequestState.FAILED else "debug"
        self._log.log(
            level,
            f"Request {ctx.kind} -> {ctx.state.value}",
            log_scope="session",
            session_id=ctx.session_id,
            request_id=ctx.request_id,
            state=ctx.state.value,
        )

    @asynccontextmanager
    async def _worker(self, ctx: RequestContext, credential: str) -> AsyncIterator[WorkerHandle]:
        """Spawn and initialize a worker; tear it down when the block exits."""
        handle: Optional[WorkerHandle] = None
        succeeded = False
        try:
            self._advance(ctx, RequestState.SPAWNING)
            handle = await self._supervisor.spawn(credential, ctx.session_id)

            self._advance(ctx, RequestState.INITIALIZING)
            await self._correlator.initialize(handle, ctx.session_id)

            self._advance(ctx, RequestState.EXECUTING)
            yield handle
            succeeded = True
        except GatewayError as e:
            ctx.error_code = e.code
            self._log.error(
                f"Request {ctx.kind} failed: {e.message}",
                log_scope="session",
                session_id=ctx.session_id,
                request_id=ctx.request_id,
                code=e.code,
            )
            raise
        finally:
            self._advance(ctx, RequestState.TEARING_DOWN)
            await self._supervisor.terminate(handle)
            self._advance(ctx, RequestState.COMPLETED if succeeded else RequestState.FAILED)

    # --- Entry points ---

    async def run_tool(
        self,
        credential: str,
        session_id: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> ToolRunResult:
        """
        Direct control: one tool call on a fresh worker.

        Raises:
            ConcurrencyExceeded, SpawnTimeout, SpawnError, InitializationFailure,
            MethodTimeout, ToolExecutionError, ProtocolError
        """
        async with self._gate.slot(session_id):
            ctx = self._admit(session_id, "tool", request_id)
            self._log.info(
                "Direct LIFX control",
                log_scope="session",
                session_id=session_id,
                request_id=ctx.request_id,
                action=tool_name,
                params=sorted((arguments or {}).keys()),
            )
            async with self._worker(ctx, credential) as handle:
                result = await self._correlator.call(handle, tool_name, arguments or {}, session_id=session_id)
                output = decode_result(result)

        self._log.info(
            "LIFX control completed",
            log_scope="session",
            session_id=session_id,
            request_id=ctx.request_id,
            action=tool_name,
            duration_ms=round(ctx.duration_ms(), 2),
        )
        return ToolRunResult(request_id=ctx.request_id, tool=tool_name, result=output, states=ctx.states)

    async def run_chat(
        self,
        credential: str,
        session_id: str,
        message: str,
        llm_api_key: str,
        max_tokens: int = 1000,
        restrictive: bool = True,
        request_id: Optional[str] = None,
    ) -> ChatRunResult:
        """
        LLM-mediated control: alternate model turns and tool calls.

        Raises:
            ConcurrencyExceeded, SpawnTimeout, SpawnError, InitializationFailure,
            ProtocolError, ModelError
        """
        if self._chat_factory is None or self._prompts is None:
            raise GatewayError("Chat is not configured")

        async with self._gate.slot(session_id):
            ctx = self._admit(session_id, "chat", request_id)
            self._log.info(
                "Chat request",
                log_scope="session",
                session_id=session_id,
                request_id=ctx.request_id,
                message_length=len(message),
                restrictive=restrictive,
                max_tokens=max_tokens,
            )
            async with self._worker(ctx, credential) as handle:
                result = await self._chat_loop(ctx, handle, message, llm_api_key, max_tokens, restrictive)

        self._log.info(
            "Chat completed",
            log_scope="session",
            session_id=session_id,
            request_id=ctx.request_id,
            rounds=result.rounds,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )
        result.states = ctx.states
        return result

    async def _chat_loop(
        self,
        ctx: RequestContext,
        handle: WorkerHandle,
        message: str,
        llm_api_key: str,
        max_tokens: int,
        restrictive: bool,
    ) -> ChatRunResult:
        session_id = ctx.session_id
        tools = await self._correlator.list_tools(handle, session_id)
        chat = self._chat_factory(
            api_key=llm_api_key,
            system_prompt=self._prompts.select(restrictive),
            tools=to_llm_tools(tools),
            max_tokens=max_tokens,
        )
        chat.add_user(message)
        executor = MCPToolExecutor(self._correlator, handle, session_id)

        usage = Usage()
        records: List[ToolCallRecord] = []
        rounds = 0

        turn = await chat.next_turn()
        usage.add(turn.input_tokens, turn.output_tokens)

        while turn.wants_tools and rounds < self._max_tool_rounds:
            rounds += 1
            for call in turn.tool_calls:
                self._log.info(
                    "Tool call details",
                    log_scope="session",
                    session_id=session_id,
                    request_id=ctx.request_id,
                    tool_name=call["name"],
                    tool_id=call["id"],
                    parameters=call["args"],
                )
                outcome = await executor.execute(call["name"], call["args"])
                if not outcome.success:
                    self._log.warning(
                        "Tool call failed",
                        log_scope="session",
                        session_id=session_id,
                        request_id=ctx.request_id,
                        tool_name=call["name"],
                        error=outcome.error,
                        code=outcome.code,
                    )
                records.append(ToolCallRecord(
                    name=call["name"],
                    arguments=call["args"],
                    success=outcome.success,
                    error=outcome.error,
                ))
                chat.add_tool_result(call["id"], outcome.to_model_content(), is_error=not outcome.success)

            turn = await chat.next_turn()
            usage.add(turn.input_tokens, turn.output_tokens)

        stop_reason = turn.stop_reason
        if turn.wants_tools:
            self._log.warning(
                "Tool round limit reached",
                log_scope="session",
                session_id=session_id,
                request_id=ctx.request_id,
                max_tool_rounds=self._max_tool_rounds,
            )
            stop_reason = "max_tool_rounds"

        return ChatRunResult(
            request_id=ctx.request_id,
            response=turn.text,
            tool_calls=records,
            usage=usage,
            rounds=rounds,
            stop_reason=stop_reason,
        )
