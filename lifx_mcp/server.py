"""
LIFX MCP Server

JSON-RPC 2.0 over stdio, one message per line.

DESIGN RULES:
- stdout carries protocol messages only; all logging goes to stderr
- Every request gets exactly one response; notifications get none
- A failing tool never takes the process down
- SIGTERM / SIGINT exit cleanly with status 0
"""

import json
import logging
import os
import signal
import sys
import threading
from typing import Any, BinaryIO, Dict, Optional

from lifx_mcp.client import DEFAULT_BASE_URL, LifxClient
from lifx_mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    SERVER_INFO,
    TOOL_ERROR,
    RpcError,
    error_response,
    result_response,
)
from lifx_mcp.tools.registry import ToolRegistry, build_registry


logger = logging.getLogger(__name__)


class LifxMcpServer:
    """Dispatches MCP methods to the registered LIFX tools."""

    def __init__(self, registry: ToolRegistry):
        self._registry = registry
        self._write_lock = threading.Lock()

    # --- Message handling ---

    def handle_line(self, line: bytes) -> Optional[Dict[str, Any]]:
        """Handle one raw input line; returns the response to send, if any."""
        try:
            message = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Failed to parse request: {e}")
            return error_response(None, RpcError(PARSE_ERROR, "Parse error"))
        return self.handle_message(message)

    def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict):
            return error_response(None, RpcError(INVALID_REQUEST, "Invalid Request"))

        msg_id = message.get("id")
        method = message.get("method")
        is_notification = "id" not in message and isinstance(method, str)

        try:
            if message.get("jsonrpc") != JSONRPC_VERSION:
                raise RpcError(INVALID_REQUEST, "Invalid JSON-RPC version")
            if not isinstance(method, str):
                raise RpcError(INVALID_REQUEST, "Missing method")
            if is_notification:
                logger.debug(f"Received notification {method}")
                return None

            logger.debug(f"Received request {method} ({msg_id})")
            return result_response(msg_id, self._dispatch(method, message.get("params") or {}))
        except RpcError as e:
            logger.error(f"Request handling error: {e.message}")
            if is_notification:
                return None
            return error_response(msg_id, e)

    def _dispatch(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": SERVER_INFO,
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": [tool.to_dict() for tool in self._registry.list_all()]}
        if method == "tools/call":
            return self._call_tool(params)
        raise RpcError(METHOD_NOT_FOUND, f"Unknown method: {method}")

    def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise RpcError(INVALID_PARAMS, "tools/call requires a tool name")

        name = params["name"]
        tool = self._registry.get(name)
        if tool is None:
            raise RpcError(METHOD_NOT_FOUND, f"Unknown tool: {name}")

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise RpcError(INVALID_PARAMS, "Tool arguments must be an object")

        missing = [key for key in tool.required if arguments.get(key) is None]
        if missing:
            raise RpcError(INVALID_PARAMS, f"Missing required parameter(s): {', '.join(missing)}")

        try:
            result = tool.run(arguments)
        except Exception as e:
            logger.exception(f"Tool {name} crashed")
            raise RpcError(TOOL_ERROR, f"Tool {name} failed: {e}") from e

        if not result.success:
            raise RpcError(TOOL_ERROR, result.error or f"Tool {name} failed")

        return {
            "content": [{"type": "text", "text": json.dumps(result.output, indent=2)}],
            "structuredContent": result.output,
        }

    # --- Transport ---

    def send(self, stream: BinaryIO, message: Dict[str, Any]) -> None:
        with self._write_lock:
            stream.write((json.dumps(message) + "\n").encode("utf-8"))
            stream.flush()

    def serve(self, stdin: BinaryIO, stdout: BinaryIO) -> int:
        """Read requests until EOF. Returns the process exit status."""
        for line in stdin:
            if not line.strip():
                continue
            response = self.handle_line(line)
            if response is None:
                continue
            try:
                self.send(stdout, response)
            except (BrokenPipeError, OSError) as e:
                logger.error(f"stdout closed: {e}")
                return 0
        logger.debug("stdin closed, shutting down")
        return 0


def configure_logging(level: Optional[str]) -> None:
    """Log to stderr; debug only when LOG_LEVEL=debug, otherwise errors only."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if (level or "").lower() == "debug" else logging.ERROR)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    root_logger.addHandler(handler)


def _exit_cleanly(signum: int, frame: Any) -> None:
    logger.debug(f"Received {signal.Signals(signum).name}, shutting down")
    sys.exit(0)


def main() -> int:
    configure_logging(os.environ.get("LOG_LEVEL"))

    token = os.environ.get("LIFX_TOKEN")
    if not token:
        sys.stderr.write(json.dumps({
            "jsonrpc": JSONRPC_VERSION,
            "error": {"code": INTERNAL_ERROR, "message": "LIFX_TOKEN environment variable is required"},
        }) + "\n")
        sys.stderr.flush()
        return 1

    signal.signal(signal.SIGTERM, _exit_cleanly)
    signal.signal(signal.SIGINT, _exit_cleanly)

    client = LifxClient(token, base_url=os.environ.get("LIFX_API_BASE") or DEFAULT_BASE_URL)
    server = LifxMcpServer(build_registry(client))
    logger.debug(f"LIFX MCP server ready (session {os.environ.get('SESSION_ID', 'system')})")
    return server.serve(sys.stdin.buffer, sys.stdout.buffer)
