"""
Session Tracker

Per-session request accounting over an injected StateStore.

DESIGN RULES:
- No long-term persistence
- No cross-session sharing
- Request counters are monotonic and capped
- Sessions expire by age, not by inactivity
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from memory.state_store import InMemoryStateStore, StateStore
from memory.types import SessionRecord
from observability.emitter import SessionLogger
from observability.sink import SessionLogSink
from schemas.errors import SessionLimitExceeded


KEY_PREFIX = "session:"


class SessionTracker:
    """
    Session admission state.

    Thread-safe as long as the StateStore is.
    """

    DEFAULT_REQUEST_LIMIT = 100
    DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60

    def __init__(
        self,
        store: Optional[StateStore] = None,
        request_limit: int = DEFAULT_REQUEST_LIMIT,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        log_sink: Optional[SessionLogSink] = None,
    ):
        """
        Initialize the tracker.

        Args:
            store: Backing key-value store (in-memory by default)
            request_limit: Requests allowed per session
            max_age_seconds: Session lifetime before the sweeper removes it
            log_sink: Session log sink
        """
        self._store = store if store is not None else InMemoryStateStore()
        self._limit = request_limit
        self._max_age = max_age_seconds
        self._log = SessionLogger(__name__, log_sink)

    @property
    def request_limit(self) -> int:
        return self._limit

    def _get(self, session_id: str) -> Optional[SessionRecord]:
        return self._store.get(KEY_PREFIX + session_id)

    def track(self, session_id: str, client_ip: Optional[str] = None) -> SessionRecord:
        """Register a session on first sight; later calls are no-ops."""
        created = []

        def ensure(record: Optional[SessionRecord]) -> SessionRecord:
            if record is None:
                record = SessionRecord(session_id=session_id, client_ip=client_ip)
                created.append(record)
            return record

        record = self._store.update(KEY_PREFIX + session_id, ensure)
        if created:
            self._log.info(
                "New session created",
                session_id=session_id,
                client_ip=client_ip,
                active_sessions=self.active_count(),
            )
        return record

    def consume(self, session_id: str, client_ip: Optional[str] = None) -> SessionRecord:
        """
        Count one request against the session.

        Raises:
            SessionLimitExceeded: The session already used its allowance
        """
        rejected: List[int] = []

        def bump(record: Optional[SessionRecord]) -> SessionRecord:
            record = record or SessionRecord(session_id=session_id, client_ip=client_ip)
            if record.request_count >= self._limit:
                rejected.append(record.request_count)
                return record
            return replace(record, request_count=record.request_count + 1)

        record = self._store.update(KEY_PREFIX + session_id, bump)
        if rejected:
            self._log.warning(
                "Session request limit exceeded",
                session_id=session_id,
                request_count=rejected[0],
                limit=self._limit,
            )
            raise SessionLimitExceeded(
                f"Session request limit exceeded ({self._limit} requests)",
                details={"requests_used": rejected[0]},
            )
        return record

    def remaining(self, record: SessionRecord) -> int:
        return max(self._limit - record.request_count, 0)

    def info(self, session_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        record = self._get(session_id)
        if record is None:
            return None
        return record.to_info(self._limit, now)

    def clear(self, session_id: str) -> bool:
        """Forget a session. Returns True if it was tracked."""
        cleared = self._store.delete(KEY_PREFIX + session_id)
        if cleared:
            self._log.info(
                "Session cleared manually",
                session_id=session_id,
                active_sessions=self.active_count(),
            )
        return cleared

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Remove sessions older than max age.

        Returns:
            The expired session ids
        """
        now = now or datetime.now(timezone.utc)

        def expired(key: str, record: Any) -> bool:
            return key.startswith(KEY_PREFIX) and record.age_seconds(now) > self._max_age

        removed = [key[len(KEY_PREFIX):] for key in self._store.sweep(expired)]
        if removed:
            self._log.info(
                "Cleaned up expired sessions",
                log_scope="system",
                cleaned_sessions=len(removed),
                active_sessions=self.active_count(),
            )
        return removed

    def active_count(self) -> int:
        return sum(1 for key in self._store.keys() if key.startswith(KEY_PREFIX))
