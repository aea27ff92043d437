"""
Log Classification

Decides whether a log emission is system-wide or session-scoped.

Pure function of (message, metadata, keyword list). Call sites that know
their scope pass meta["log_scope"]; keyword matching is the fallback for
everything else.
"""

from typing import Any, Dict, Iterable, Optional

from observability.log_entry import LogScope, SYSTEM_SESSION_ID, normalize_level


DEFAULT_SYSTEM_KEYWORDS = (
    "startup",
    "started",
    "shutdown",
    "shutting down",
    "configuration",
    "initialized",
    "critical",
    "uncaught exception",
    "unhandled",
    "server error",
    "expired sessions",
)

SCOPE_KEY = "log_scope"
SESSION_ID_KEYS = ("session_id", "sessionId")


def session_id_of(meta: Optional[Dict[str, Any]]) -> Optional[str]:
    """Extract a real session id from metadata (the sentinel does not count)."""
    if not meta:
        return None
    session_id = meta.get("session_id") or meta.get("sessionId")
    if not session_id or session_id == SYSTEM_SESSION_ID:
        return None
    return str(session_id)


def matches_keyword(message: str, keywords: Iterable[str]) -> bool:
    text = message.lower()
    return any(keyword.lower() in text for keyword in keywords)


def classify(
    message: str,
    meta: Optional[Dict[str, Any]] = None,
    keywords: Iterable[str] = DEFAULT_SYSTEM_KEYWORDS,
    level: str = "info",
) -> LogScope:
    """
    Classify a log emission.

    Args:
        message: Log message text
        meta: Free-form metadata (session_id, log_scope, ...)
        keywords: Operational keywords that mark a message as system-wide
        level: Log level of the emission

    Returns:
        LogScope.SYSTEM or LogScope.SESSION
    """
    session_id = session_id_of(meta)

    explicit = (meta or {}).get(SCOPE_KEY)
    if explicit == LogScope.SYSTEM.value:
        return LogScope.SYSTEM
    if explicit == LogScope.SESSION.value:
        return LogScope.SESSION if session_id else LogScope.SYSTEM

    if matches_keyword(message, keywords):
        return LogScope.SYSTEM
    if session_id is None and normalize_level(level) == "error":
        return LogScope.SYSTEM
    if session_id is not None:
        return LogScope.SESSION
    return LogScope.SYSTEM
