import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.lighting import router as lighting_router
from app.api.logs import router as logs_router
from app.api.sessions import router as sessions_router
from app.core.config import Settings, settings as default_settings
from app.core.logging import configure_logging
from app.dependencies import GatewayContainer, build_container
from observability.emitter import SessionLogger
from schemas.errors import GatewayError
from schemas.response import ErrorResponse


SERVER_NAME = "LIFX MCP Gateway"

ENDPOINTS = [
    "GET /health",
    "GET /api/info",
    "GET /api/status",
    "GET /api/session-info",
    "POST /api/clear-session",
    "POST /api/chat",
    "POST /api/lifx/{action}",
    "POST /api/test/llm",
    "GET /api/logs",
    "GET /api/logs/backend",
    "GET /api/logs/mcp",
]


async def _sweep_forever(container: GatewayContainer) -> None:
    """Periodic cleanup of expired sessions, their logs, and stale IP windows."""
    log = SessionLogger(__name__, container.log_sink)
    while True:
        await asyncio.sleep(container.settings.session_cleanup_interval)
        try:
            container.sweep()
        except Exception as e:
            log.error(f"Session cleanup failed: {e}", log_scope="system")


def create_app(settings: Optional[Settings] = None, container: Optional[GatewayContainer] = None) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Application settings (module defaults when omitted)
        container: Pre-built component graph (tests inject fakes here)
    """
    settings = settings or default_settings
    container = container or build_container(settings)
    log = SessionLogger(__name__, container.log_sink)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        log.info(
            f"{SERVER_NAME} started",
            port=settings.api_port,
            environment=settings.environment,
            max_concurrent_mcp=settings.max_concurrent_mcp,
            allowed_origins=settings.allowed_origins,
        )
        sweeper = asyncio.create_task(_sweep_forever(container))
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            stopped = await container.supervisor.terminate_all()
            log.info(f"{SERVER_NAME} shutting down", terminated_workers=stopped)

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=lifespan)
    app.state.container = container

    # CORS middleware - allow the web client to call the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Requests-Used", "X-Requests-Remaining"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    def _error_body(request: Request, error: str, code: str, details=None) -> dict:
        body = ErrorResponse(
            error=error,
            code=code,
            request_id=getattr(request.state, "request_id", None),
            details=details if settings.is_development else None,
        )
        return body.model_dump(exclude_none=True)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, exc.code, exc.details or None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content=_error_body(request, "Invalid request", "INVALID_REQUEST", {"errors": errors}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            log.warning("Route not found", method=request.method, path=request.url.path)
            body = _error_body(request, "Route not found", "NOT_FOUND")
            body["available_endpoints"] = ENDPOINTS
            return JSONResponse(status_code=404, content=body)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, str(exc.detail), "HTTP_ERROR"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.error(
            "Unhandled error",
            log_scope="system",
            request_id=getattr(request.state, "request_id", None),
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(request, "Internal server error", "INTERNAL_ERROR", {"error": str(exc)}),
        )

    app.include_router(lighting_router, prefix="/api")
    app.include_router(sessions_router, prefix="/api")
    app.include_router(logs_router, prefix="/api")

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - container.started_at, 3),
            "version": settings.version,
            "environment": settings.environment,
        }

    @app.get("/api/info")
    async def info():
        return {
            "name": SERVER_NAME,
            "version": settings.version,
            "description": "Gateway for LLM-mediated and direct LIFX light control",
            "endpoints": ENDPOINTS,
            "authentication": "Demo access key required in x-demo-key header",
            "rate_limit": {
                "requests_per_session": settings.session_request_limit,
                "ip_rate_limit": f"{settings.ip_rate_limit_max} requests per {settings.ip_rate_limit_window:g}s",
                "max_concurrent_mcp": settings.max_concurrent_mcp,
                "development_mode": settings.is_development,
            },
        }

    @app.get("/api/status")
    async def status():
        return {
            "status": "online",
            "server": SERVER_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - container.started_at, 3),
            "version": settings.version,
            "environment": settings.environment,
            "active_workers": container.supervisor.live_count,
            "active_requests": container.gate.active,
            "active_sessions": container.sessions.active_count(),
            "ready": True,
        }

    return app


app = create_app()
