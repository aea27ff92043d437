"""
State Store

Key-value abstraction behind session and rate-limit state.

DESIGN RULES:
- Components receive a StateStore; they never own a module-level map
- The in-memory store is correct for a single instance only
- A shared backend (e.g. a cache server) can replace it without
  touching the limiters
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Callable, Dict, List, Optional


class StateStore(ABC):
    """Minimal key-value contract used by the admission layer."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass

    @abstractmethod
    def update(self, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        """Atomically replace a value with fn(old_value) and return the new value."""
        pass

    @abstractmethod
    def sweep(self, predicate: Callable[[str, Any], bool]) -> List[str]:
        """Remove every entry the predicate matches. Returns removed keys."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def __len__(self) -> int:
        return len(self.keys())


class InMemoryStateStore(StateStore):
    """
    Process-local StateStore.

    Thread-safe for concurrent access.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def update(self, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        with self._lock:
            value = fn(self._data.get(key))
            self._data[key] = value
            return value

    def sweep(self, predicate: Callable[[str, Any], bool]) -> List[str]:
        with self._lock:
            removed = [k for k, v in self._data.items() if predicate(k, v)]
            for key in removed:
                del self._data[key]
            return removed

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())
