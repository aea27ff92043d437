"""
Call Correlator

Pairs JSON-RPC requests sent to a Tool Process with their responses.

DESIGN RULES:
- Matching is strictly by id; everything else on stdout is ignored here
- A PendingCall settles exactly once
- Timer cancelled and listener detached before the outcome is delivered
- No ordering guarantee between concurrent calls on one worker
"""

import asyncio
import secrets
import time
from typing import Any, Dict, List, Optional

from mcp_client.codec import CodecEvent, MessageEvent, ProtocolErrorEvent, encode
from mcp_client.supervisor import WorkerHandle
from observability.emitter import SessionLogger
from observability.log_entry import StoreType, utcnow
from observability.sink import SessionLogSink
from schemas.errors import (
    GatewayError,
    InitializationFailure,
    MethodTimeout,
    ProtocolError,
    ToolExecutionError,
    WorkerExited,
)


PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "lifx-mcp-gateway", "version": "1.0.0"}


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class PendingCall:
    """
    One outstanding request on one worker.

    Registered on the WorkerHandle as a listener under its id.
    """

    def __init__(
        self,
        handle: WorkerHandle,
        call_id: str,
        method: str,
        params: Dict[str, Any],
        future: "asyncio.Future[Any]",
    ):
        self.handle = handle
        self.id = call_id
        self.method = method
        self.params = params
        self.future = future
        self.created_at = utcnow()
        self.timer: Optional[asyncio.TimerHandle] = None

    @property
    def settled(self) -> bool:
        return self.future.done()

    def detach(self) -> None:
        """Cancel the timer and leave the handle's listener table."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.handle.unsubscribe(self.id)

    def resolve(self, result: Any) -> None:
        if self.settled:
            return
        self.detach()
        self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        if self.settled:
            return
        self.detach()
        self.future.set_exception(error)

    def expire(self, timeout: float) -> None:
        self.reject(MethodTimeout(f"MCP method timeout: {self.method} after {timeout}s"))

    # --- OutputListener ---

    def on_event(self, event: CodecEvent) -> None:
        if isinstance(event, MessageEvent):
            message = event.message
            # A request from the worker may reuse our id; only responses count
            if message.get("id") != self.id or "method" in message:
                return
            if "error" in message:
                error = message.get("error") or {}
                self.reject(ToolExecutionError(
                    error.get("message") or "Unknown MCP error",
                    rpc_code=error.get("code"),
                    details={"data": error.get("data")} if error.get("data") is not None else None,
                ))
            elif "result" in message:
                self.resolve(message["result"])
            else:
                self.reject(ProtocolError(f"Response to {self.method} has neither result nor error"))
        elif isinstance(event, ProtocolErrorEvent):
            if event.message.get("id") == self.id:
                self.reject(ProtocolError(f"Invalid response to {self.method}: {event.reason}"))

    def on_exit(self, returncode: Optional[int]) -> None:
        self.reject(WorkerExited(
            f"MCP server exited before responding to {self.method} (code {returncode})"
        ))


class CallCorrelator:
    """
    Request/response correlation over a WorkerHandle.

    Stateless between calls: the pending table lives on the handle.
    """

    DEFAULT_METHOD_TIMEOUT = 10.0
    DEFAULT_INIT_TIMEOUT = 5.0

    def __init__(
        self,
        log_sink: Optional[SessionLogSink] = None,
        method_timeout: float = DEFAULT_METHOD_TIMEOUT,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
    ):
        self._log = SessionLogger(__name__, log_sink, StoreType.MCP)
        self._method_timeout = method_timeout
        self._init_timeout = init_timeout

    def _unique_id(self, handle: WorkerHandle) -> str:
        call_id = new_request_id()
        while handle.is_subscribed(call_id):
            call_id = new_request_id()
        return call_id

    async def request(
        self,
        handle: WorkerHandle,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> Any:
        """
        Send one request and wait for its correlated response.

        Args:
            handle: Live worker
            method: JSON-RPC method
            params: Method params
            timeout: Seconds to wait; defaults to the method timeout
            session_id: Session to tag logs with (defaults to the worker's)

        Returns:
            The response's result payload

        Raises:
            MethodTimeout, ToolExecutionError, ProtocolError, WorkerExited
        """
        timeout = self._method_timeout if timeout is None else timeout
        session_id = session_id or handle.session_id
        params = params or {}

        loop = asyncio.get_running_loop()
        call_id = self._unique_id(handle)
        pending = PendingCall(handle, call_id, method, params, loop.create_future())
        handle.subscribe(call_id, pending)
        pending.timer = loop.call_later(timeout, pending.expire, timeout)

        message = {"jsonrpc": "2.0", "id": call_id, "method": method, "params": params}
        self._log.debug("Sending MCP request", method=method, request_id=call_id, session_id=session_id)

        started = time.monotonic()
        try:
            try:
                await handle.send(encode(message))
            except WorkerExited as e:
                pending.reject(e)
            result = await pending.future
        except GatewayError as e:
            self._log.warning(
                f"MCP request failed: {method}",
                request_id=call_id,
                session_id=session_id,
                error=e.message,
                code=e.code,
            )
            raise
        finally:
            # Also covers cancellation of the awaiting coroutine
            pending.detach()
            if not pending.future.done():
                pending.future.cancel()

        self._log.debug(
            f"MCP request completed: {method}",
            request_id=call_id,
            session_id=session_id,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return result

    async def notify(self, handle: WorkerHandle, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification (no id, no response)."""
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        await handle.send(encode(message))

    async def initialize(self, handle: WorkerHandle, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Perform the MCP handshake.

        Raises:
            InitializationFailure: On any failure, including timeout
        """
        session_id = session_id or handle.session_id
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "clientInfo": CLIENT_INFO,
        }
        try:
            result = await self.request(handle, "initialize", params, self._init_timeout, session_id)
            await self.notify(handle, "notifications/initialized")
        except GatewayError as e:
            self._log.error("MCP initialization failed", session_id=session_id, error=e.message, code=e.code)
            raise InitializationFailure(f"MCP initialization failed: {e.message}") from e

        self._log.debug(
            "MCP server initialized",
            log_scope="session",
            session_id=session_id,
            server=(result or {}).get("serverInfo"),
        )
        return result or {}

    async def list_tools(self, handle: WorkerHandle, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return the worker's tool definitions."""
        result = await self.request(handle, "tools/list", {}, session_id=session_id)
        tools = (result or {}).get("tools")
        if not isinstance(tools, list):
            raise ProtocolError("tools/list response has no tools array")
        return tools

    async def call(
        self,
        handle: WorkerHandle,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Invoke one tool.

        Returns:
            The tools/call result payload (content, structuredContent)

        Raises:
            ToolExecutionError: Worker error response or an isError result
        """
        params = {"name": tool_name, "arguments": arguments or {}}
        result = await self.request(handle, "tools/call", params, session_id=session_id)
        if not isinstance(result, dict):
            raise ProtocolError(f"tools/call result for {tool_name} is not an object")
        if result.get("isError"):
            raise ToolExecutionError(content_text(result) or f"Tool {tool_name} failed")
        return result


def content_text(result: Dict[str, Any]) -> str:
    """Concatenate the text blocks of a tools/call result."""
    parts = [
        block.get("text", "")
        for block in result.get("content") or []
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(p for p in parts if p)
