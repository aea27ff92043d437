# Memory Package
from memory.types import SessionRecord, RateWindow
from memory.state_store import StateStore, InMemoryStateStore
from memory.session_store import SessionTracker

__all__ = ["SessionRecord", "RateWindow", "StateStore", "InMemoryStateStore", "SessionTracker"]
