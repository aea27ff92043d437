"""
Gateway Error Taxonomy

Every failure that can reach the HTTP layer is one of these.
Each carries a stable machine-readable code and an HTTP status.

DESIGN RULES:
- Raised where the failure happens, converted to JSON only in app.main
- Messages are safe to show to the client (no credentials, no stack traces)
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


# --- Tool Process lifecycle ---

class SpawnTimeout(GatewayError):
    """The worker did not confirm start within the spawn window."""
    code = "SPAWN_TIMEOUT"
    status_code = 504


class SpawnError(GatewayError):
    """The OS refused to start the worker (missing executable, permissions)."""
    code = "SPAWN_ERROR"
    status_code = 500


class InitializationFailure(GatewayError):
    """The MCP handshake was rejected or timed out."""
    code = "INITIALIZATION_FAILED"
    status_code = 502


# --- JSON-RPC round trips ---

class MethodTimeout(GatewayError):
    """No correlated response arrived in time."""
    code = "METHOD_TIMEOUT"
    status_code = 504


class ProtocolError(GatewayError):
    """Malformed or version-mismatched message, or a desynchronised stream."""
    code = "PROTOCOL_ERROR"
    status_code = 502


class WorkerExited(ProtocolError):
    """The worker went away while a call was outstanding."""
    code = "WORKER_EXITED"


class ToolExecutionError(GatewayError):
    """The worker answered with a structured error for a specific call."""
    code = "TOOL_ERROR"
    status_code = 502

    def __init__(self, message: str, *, rpc_code: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.rpc_code = rpc_code


# --- Admission ---

class ConcurrencyExceeded(GatewayError):
    code = "SERVER_BUSY"
    status_code = 429


class SessionLimitExceeded(GatewayError):
    code = "SESSION_LIMIT"
    status_code = 429


class IpRateLimitExceeded(GatewayError):
    code = "IP_RATE_LIMIT"
    status_code = 429


class Unauthorized(GatewayError):
    code = "UNAUTHORIZED"
    status_code = 401


class MissingSessionId(GatewayError):
    code = "MISSING_SESSION_ID"
    status_code = 400


class SessionNotFound(GatewayError):
    code = "SESSION_NOT_FOUND"
    status_code = 404


# --- Input ---

class CredentialFormatError(GatewayError):
    code = "INVALID_LIFX_KEY"
    status_code = 400


class InvalidRequest(GatewayError):
    code = "INVALID_REQUEST"
    status_code = 400


# --- LLM collaborator ---

class ModelError(GatewayError):
    code = "LLM_ERROR"
    status_code = 502
