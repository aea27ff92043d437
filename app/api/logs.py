"""
Log API Routes

Read-only views of the session log sink. A caller sees system entries
plus its own session's entries, never another session's.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.dependencies import GatewayContainer, get_container, require_session
from observability.log_entry import StoreType
from schemas.response import LogEntryOut, LogsResponse


router = APIRouter(prefix="/logs")

DEFAULT_BACKEND_LIMIT = 25
DEFAULT_MCP_LIMIT = 20


def _view(
    container: GatewayContainer,
    session_id: str,
    store: StoreType,
    limit: int,
    level: Optional[str],
    since: Optional[datetime],
) -> LogsResponse:
    limit = max(0, min(limit, container.settings.log_query_max))
    entries = container.log_sink.query(session_id, store=store, level=level, since=since, limit=limit)
    return LogsResponse(
        store=store.value,
        session_id=session_id,
        count=len(entries),
        stats=container.log_sink.stats(session_id, store=store),
        logs=[LogEntryOut(**entry.to_dict()) for entry in entries],
    )


@router.get("")
def logs_index(session_id: str = Depends(require_session)):
    return {
        "session_id": session_id,
        "endpoints": {
            "backend": "/api/logs/backend",
            "mcp": "/api/logs/mcp",
        },
        "params": {
            "limit": "Newest N entries (capped)",
            "level": "debug | info | warning | error",
            "since": "ISO-8601 timestamp",
        },
    }


@router.get("/backend", response_model=LogsResponse)
def backend_logs(
    limit: int = Query(DEFAULT_BACKEND_LIMIT),
    level: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    session_id: str = Depends(require_session),
    container: GatewayContainer = Depends(get_container),
) -> LogsResponse:
    return _view(container, session_id, StoreType.BACKEND, limit, level, since)


@router.get("/mcp", response_model=LogsResponse)
def mcp_logs(
    limit: int = Query(DEFAULT_MCP_LIMIT),
    level: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    session_id: str = Depends(require_session),
    container: GatewayContainer = Depends(get_container),
) -> LogsResponse:
    return _view(container, session_id, StoreType.MCP, limit, level, since)
