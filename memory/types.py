"""
Memory Types

Data structures for per-session admission state.

DESIGN RULES:
- No business logic
- Session-scoped only
- Nothing here survives a restart
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionRecord:
    """
    Admission state for one client session.

    request_count only ever grows until the record is cleared or expires.
    """
    session_id: str
    request_count: int = 0
    created_at: datetime = field(default_factory=_now)
    client_ip: Optional[str] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or _now()) - self.created_at).total_seconds()

    def to_info(self, request_limit: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Client-facing view of the record."""
        return {
            "session_id": self.session_id,
            "client_ip": self.client_ip,
            "requests_used": self.request_count,
            "requests_remaining": max(request_limit - self.request_count, 0),
            "request_limit": request_limit,
            "created_at": self.created_at.isoformat(),
            "session_age_ms": int(self.age_seconds(now) * 1000),
            "is_active": True,
        }


@dataclass
class RateWindow:
    """Fixed-window request counter for one client IP."""
    started_at: datetime = field(default_factory=_now)
    count: int = 0
