"""
Session API Routes

Usage info for the calling session and the manual reset.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from app.dependencies import GatewayContainer, get_container, require_access_key, require_session
from observability.emitter import SessionLogger
from schemas.errors import MissingSessionId, SessionNotFound
from schemas.response import SessionInfoResponse


router = APIRouter()


@router.get("/session-info", response_model=SessionInfoResponse)
def session_info(
    session_id: str = Depends(require_session),
    container: GatewayContainer = Depends(get_container),
) -> SessionInfoResponse:
    info = container.sessions.info(session_id)
    if info is None:
        raise SessionNotFound("Session not found")
    return SessionInfoResponse(**info)


@router.post("/clear-session", dependencies=[Depends(require_access_key)])
def clear_session(
    x_session_id: Optional[str] = Header(default=None),
    container: GatewayContainer = Depends(get_container),
):
    """
    Forget a session's usage counter and its log partitions.

    The session is not tracked first, so clearing an unknown id is a 404.
    """
    if not x_session_id:
        raise MissingSessionId("Session ID required")

    cleared = container.sessions.clear(x_session_id)
    if not cleared:
        raise SessionNotFound("Session not found")

    container.log_sink.purge(x_session_id)
    # No session id: the entry must neither recreate the purged partition nor name it
    SessionLogger(__name__, container.log_sink).info("Session logs purged", log_scope="system")
    return {"success": True, "message": "Session cleared successfully"}
