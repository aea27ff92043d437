"""
Session Log Sink

Bounded in-memory log storage partitioned by session.

DESIGN RULES:
- A session can only read its own entries plus system entries
- Storage is only mutated through record() and purge()
- Every buffer is bounded; the number of session partitions is bounded
- Recording never raises into the caller
"""

import itertools
import logging
from collections import OrderedDict, deque
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, Iterable, List, Optional

from observability.classifier import DEFAULT_SYSTEM_KEYWORDS, SESSION_ID_KEYS, classify, session_id_of
from observability.log_entry import LogEntry, LogScope, StoreType, normalize_level, parse_level, utcnow


logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = {
    "token",
    "apikey",
    "api_key",
    "authorization",
    "password",
    "secret",
    "credential",
    "credentials",
    "x-demo-key",
}
_SENSITIVE_SUFFIXES = ("_token", "_key", "_secret", "_password")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in _SENSITIVE_KEYS or lowered.endswith(_SENSITIVE_SUFFIXES)


def scrub(meta: Dict[str, Any]) -> Dict[str, Any]:
    """Replace credential-looking values before anything is stored."""
    clean: Dict[str, Any] = {}
    for key, value in meta.items():
        if _is_sensitive(str(key)):
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = scrub(value)
        else:
            clean[key] = value
    return clean


class _Partitions:
    """System buffer plus per-session buffers for one store type."""

    def __init__(self, max_entries: int, max_sessions: int):
        self.max_entries = max_entries
        self.max_sessions = max_sessions
        self.system: Deque[LogEntry] = deque(maxlen=max_entries)
        # Insertion order == creation order, used for eviction
        self.sessions: "OrderedDict[str, Deque[LogEntry]]" = OrderedDict()

    def buffer_for(self, session_id: str) -> Deque[LogEntry]:
        buffer = self.sessions.get(session_id)
        if buffer is None:
            buffer = deque(maxlen=self.max_entries)
            self.sessions[session_id] = buffer
            while len(self.sessions) > self.max_sessions:
                evicted, _ = self.sessions.popitem(last=False)
                logger.debug(f"Evicted log partition for session {evicted}")
        return buffer


class SessionLogSink:
    """
    Session-isolated log storage.

    Two store types (backend, mcp), each with one system buffer and
    up to max_sessions session buffers of max_entries each.
    """

    DEFAULT_MAX_ENTRIES = 500
    DEFAULT_MAX_SESSIONS = 50

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        system_keywords: Iterable[str] = DEFAULT_SYSTEM_KEYWORDS,
    ):
        """
        Initialize the sink.

        Args:
            max_entries: Maximum entries per buffer (system and each session)
            max_sessions: Maximum session partitions per store type
            system_keywords: Keywords that mark a message as system-wide
        """
        self._max_entries = max_entries
        self._max_sessions = max_sessions
        self._keywords = tuple(system_keywords)
        self._stores: Dict[StoreType, _Partitions] = {
            store: _Partitions(max_entries, max_sessions) for store in StoreType
        }
        self._seq = itertools.count()
        self._lock = Lock()

    @property
    def system_keywords(self) -> tuple:
        return self._keywords

    def record(
        self,
        level: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
        store: StoreType = StoreType.BACKEND,
    ) -> Optional[LogEntry]:
        """
        Classify and store one log emission.

        Returns the stored entry, or None if recording failed.
        """
        try:
            meta = dict(meta or {})
            level = normalize_level(level)
            scope = classify(message, meta, self._keywords, level=level)
            session_id = session_id_of(meta) if scope is LogScope.SESSION else None
            if session_id is None:
                # System entries are readable by every session
                for key in SESSION_ID_KEYS:
                    meta.pop(key, None)

            with self._lock:
                entry = LogEntry(
                    timestamp=utcnow(),
                    level=level,
                    message=message,
                    meta=scrub(meta),
                    scope=scope,
                    session_id=session_id,
                    seq=next(self._seq),
                )
                partitions = self._stores[StoreType(store)]
                if session_id is None:
                    partitions.system.append(entry)
                else:
                    partitions.buffer_for(session_id).append(entry)
            return entry
        except Exception as e:
            # Never throw - logging must not break a request
            logger.warning(f"Failed to record log entry: {e}")
            return None

    def query(
        self,
        session_id: Optional[str],
        store: StoreType = StoreType.BACKEND,
        level: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[LogEntry]:
        """
        Return system entries merged with the caller's own session entries.

        Args:
            session_id: The calling session (None sees system entries only)
            store: Which store type to read
            level: Only entries at exactly this level
            since: Only entries at or after this instant (naive = UTC)
            limit: Keep only the newest N entries

        Returns:
            Chronologically ordered entries
        """
        with self._lock:
            partitions = self._stores[StoreType(store)]
            entries = list(partitions.system)
            if session_id and session_id in partitions.sessions:
                entries.extend(partitions.sessions[session_id])

        entries.sort(key=lambda e: (e.timestamp, e.seq))

        if level:
            # Unknown level names match nothing
            wanted = parse_level(level)
            entries = [e for e in entries if e.level == wanted]

        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            entries = [e for e in entries if e.timestamp >= since]

        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []

        return entries

    def purge(self, session_id: str) -> bool:
        """Drop a session's partitions in every store. Returns True if any existed."""
        removed = False
        with self._lock:
            for partitions in self._stores.values():
                if partitions.sessions.pop(session_id, None) is not None:
                    removed = True
        return removed

    def stats(self, session_id: Optional[str], store: StoreType = StoreType.BACKEND) -> Dict[str, int]:
        """Counts visible to one session."""
        with self._lock:
            partitions = self._stores[StoreType(store)]
            system_count = len(partitions.system)
            session_count = len(partitions.sessions.get(session_id, ())) if session_id else 0
        return {
            "system": system_count,
            "session": session_count,
            "visible": system_count + session_count,
        }

    def session_ids(self, store: StoreType = StoreType.BACKEND) -> List[str]:
        """Sessions currently holding a partition, oldest first."""
        with self._lock:
            return list(self._stores[StoreType(store)].sessions.keys())
