"""
Admission Control

Gates that run before a Tool Process is spawned.

DESIGN RULES:
- One global counter of active Tool Processes; a slot is released exactly once
- Rejection is immediate (no queueing, no fairness across users)
- Per-IP limiting is a fixed window over an injected StateStore
"""

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import AsyncIterator, List, Optional

from memory.state_store import InMemoryStateStore, StateStore
from memory.types import RateWindow
from observability.emitter import SessionLogger
from observability.sink import SessionLogSink
from schemas.errors import ConcurrencyExceeded, IpRateLimitExceeded


class ConcurrencyGate:
    """Caps the number of simultaneously live Tool Processes."""

    DEFAULT_MAX_ACTIVE = 5

    def __init__(self, max_active: int = DEFAULT_MAX_ACTIVE, log_sink: Optional[SessionLogSink] = None):
        self._max_active = max_active
        self._active = 0
        self._lock = Lock()
        self._log = SessionLogger(__name__, log_sink)

    @property
    def active(self) -> int:
        return self._active

    @property
    def max_active(self) -> int:
        return self._max_active

    def acquire(self, session_id: Optional[str] = None) -> None:
        """
        Take a slot.

        Raises:
            ConcurrencyExceeded: All slots are in use
        """
        with self._lock:
            if self._active >= self._max_active:
                active = self._active
            else:
                self._active += 1
                return
        self._log.warning(
            "Server busy - too many concurrent MCP processes",
            session_id=session_id,
            active_mcp_count=active,
            max_allowed=self._max_active,
        )
        raise ConcurrencyExceeded("Server busy, try again later")

    def release(self) -> None:
        with self._lock:
            if self._active > 0:
                self._active -= 1

    @asynccontextmanager
    async def slot(self, session_id: Optional[str] = None) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block."""
        self.acquire(session_id)
        try:
            yield
        finally:
            self.release()


class IpRateLimiter:
    """Fixed-window request limiter keyed by client IP."""

    KEY_PREFIX = "ip:"
    DEFAULT_WINDOW_SECONDS = 60.0
    DEFAULT_MAX_REQUESTS = 30

    def __init__(
        self,
        store: Optional[StateStore] = None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        log_sink: Optional[SessionLogSink] = None,
    ):
        self._store = store if store is not None else InMemoryStateStore()
        self._window = window_seconds
        self._max = max_requests
        self._log = SessionLogger(__name__, log_sink)

    def hit(self, client_ip: str, now: Optional[datetime] = None) -> int:
        """
        Count one request from an IP.

        Returns:
            Requests counted in the current window (including this one)

        Raises:
            IpRateLimitExceeded: The IP is over its allowance for this window
        """
        now = now or datetime.now(timezone.utc)
        rejected: List[bool] = []

        def bump(window: Optional[RateWindow]) -> RateWindow:
            if window is None or (now - window.started_at).total_seconds() >= self._window:
                window = RateWindow(started_at=now, count=0)
            if window.count >= self._max:
                rejected.append(True)
                return window
            return replace(window, count=window.count + 1)

        window = self._store.update(self.KEY_PREFIX + client_ip, bump)
        if rejected:
            self._log.warning("IP rate limit exceeded", ip=client_ip)
            raise IpRateLimitExceeded("IP rate limit exceeded")
        return window.count

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop windows that have fully elapsed."""
        now = now or datetime.now(timezone.utc)
        removed = self._store.sweep(
            lambda key, window: key.startswith(self.KEY_PREFIX)
            and (now - window.started_at).total_seconds() >= self._window
        )
        return len(removed)
