"""
FastAPI Dependencies

All object creation happens here, not per request.
This module wires the gateway's components and exposes them to routes.

RULE: Routes reach components only through the container on app.state.
Nothing below holds module-level mutable state.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Depends, Header, Request, Response

from app.core.config import Settings
from llm.langchain_adapter import ChatSessionFactory, LLMConfig
from llm.prompts import load_prompts
from mcp_client.correlator import CallCorrelator
from mcp_client.supervisor import ProcessSupervisor
from memory.session_store import SessionTracker
from memory.state_store import InMemoryStateStore
from observability.emitter import SessionLogger
from observability.sink import SessionLogSink
from orchestration.admission import ConcurrencyGate, IpRateLimiter
from orchestration.orchestrator import RequestOrchestrator
from schemas.errors import MissingSessionId, Unauthorized


@dataclass
class GatewayContainer:
    """Every long-lived component of one app instance."""
    settings: Settings
    log_sink: SessionLogSink
    supervisor: ProcessSupervisor
    correlator: CallCorrelator
    gate: ConcurrencyGate
    sessions: SessionTracker
    ip_limiter: IpRateLimiter
    orchestrator: RequestOrchestrator
    llm_config: LLMConfig
    started_at: float = field(default_factory=time.time)

    def sweep(self) -> List[str]:
        """Expire old sessions, drop their log partitions and stale IP windows."""
        expired = self.sessions.sweep()
        for session_id in expired:
            self.log_sink.purge(session_id)
        self.ip_limiter.sweep()
        return expired


def build_llm_config(settings: Settings) -> LLMConfig:
    return LLMConfig(
        provider=settings.llm_provider,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
        base_url=settings.llm_base_url,
        azure_endpoint=settings.azure_openai_endpoint,
        azure_api_version=settings.azure_openai_api_version,
        azure_deployment=settings.azure_openai_deployment_name,
    )


def build_container(settings: Settings, chat_factory=None) -> GatewayContainer:
    """
    Create and wire all components.

    Args:
        settings: Application settings
        chat_factory: Override for the LLM chat session factory (tests)

    Returns:
        GatewayContainer: The app's component graph
    """
    log_sink = SessionLogSink(
        max_entries=settings.log_buffer_size,
        max_sessions=settings.log_max_sessions,
        system_keywords=settings.system_log_keywords,
    )

    extra_env = {"LIFX_API_BASE": settings.lifx_api_base} if settings.lifx_api_base else None
    supervisor = ProcessSupervisor(
        log_sink=log_sink,
        command=settings.resolved_worker_command,
        spawn_timeout=settings.spawn_timeout,
        kill_grace=settings.kill_grace,
        log_level=settings.worker_log_level,
        extra_env=extra_env,
    )
    correlator = CallCorrelator(
        log_sink=log_sink,
        method_timeout=settings.method_timeout,
        init_timeout=settings.init_timeout,
    )
    gate = ConcurrencyGate(settings.max_concurrent_mcp, log_sink=log_sink)

    # One store for session records and IP windows; keys are prefixed
    state_store = InMemoryStateStore()
    sessions = SessionTracker(
        state_store,
        request_limit=settings.session_request_limit,
        max_age_seconds=settings.session_max_age,
        log_sink=log_sink,
    )
    ip_limiter = IpRateLimiter(
        state_store,
        window_seconds=settings.ip_rate_limit_window,
        max_requests=settings.ip_rate_limit_max,
        log_sink=log_sink,
    )

    llm_config = build_llm_config(settings)
    orchestrator = RequestOrchestrator(
        supervisor=supervisor,
        correlator=correlator,
        gate=gate,
        log_sink=log_sink,
        chat_factory=chat_factory or ChatSessionFactory(llm_config),
        prompts=load_prompts(settings.prompts_dir),
        max_tool_rounds=settings.max_tool_rounds,
    )

    return GatewayContainer(
        settings=settings,
        log_sink=log_sink,
        supervisor=supervisor,
        correlator=correlator,
        gate=gate,
        sessions=sessions,
        ip_limiter=ip_limiter,
        orchestrator=orchestrator,
        llm_config=llm_config,
    )


# --- Request dependencies ---

def get_container(request: Request) -> GatewayContainer:
    return request.app.state.container


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def require_access_key(
    request: Request,
    x_demo_key: Optional[str] = Header(default=None),
    container: GatewayContainer = Depends(get_container),
) -> None:
    """Shared-secret check on the x-demo-key header."""
    if x_demo_key != container.settings.access_key:
        SessionLogger(__name__, container.log_sink).warning(
            "Unauthorized access attempt",
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            demo_key_status="[PROVIDED]" if x_demo_key else "[MISSING]",
        )
        raise Unauthorized("Demo access key required")


def require_session(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
    container: GatewayContainer = Depends(get_container),
    _: None = Depends(require_access_key),
) -> str:
    """Read x-session-id and register the session on first sight."""
    if not x_session_id:
        raise MissingSessionId("Session ID required")
    container.sessions.track(x_session_id, client_ip(request))
    request.state.session_id = x_session_id
    return x_session_id


def enforce_limits(
    request: Request,
    response: Response,
    session_id: str = Depends(require_session),
    container: GatewayContainer = Depends(get_container),
) -> str:
    """Session allowance, then the per-IP window. Sets the usage headers."""
    record = container.sessions.consume(session_id, client_ip(request))
    response.headers["X-Requests-Used"] = str(record.request_count)
    response.headers["X-Requests-Remaining"] = str(container.sessions.remaining(record))
    container.ip_limiter.hit(client_ip(request))
    return session_id
