"""
Log Entry Model

One structured log record as stored by the session log sink.

DESIGN RULES:
- Pure data container
- Immutable after creation
- Classification is decided once, at record time
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class LogScope(str, Enum):
    SYSTEM = "system"
    SESSION = "session"


class StoreType(str, Enum):
    """Which activity stream an entry belongs to."""
    BACKEND = "backend"
    MCP = "mcp"


# Sentinel used when a component acts outside any client session
SYSTEM_SESSION_ID = "system"

LEVELS = ("debug", "info", "warning", "error")

_LEVEL_ALIASES = {
    "warn": "warning",
    "critical": "error",
    "fatal": "error",
    "exception": "error",
}


def parse_level(level: str) -> Optional[str]:
    """Canonical level name, or None if the spelling is unknown."""
    name = str(level).lower()
    name = _LEVEL_ALIASES.get(name, name)
    return name if name in LEVELS else None


def normalize_level(level: str) -> str:
    """Map any level spelling onto debug | info | warning | error."""
    return parse_level(level) or "info"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str
    meta: Dict[str, Any] = field(default_factory=dict)
    scope: LogScope = LogScope.SYSTEM
    session_id: Optional[str] = None
    # Monotonic tie-breaker for entries sharing a timestamp
    seq: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Public shape returned by the log endpoints."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "meta": self.meta,
        }
