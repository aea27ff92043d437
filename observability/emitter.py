"""
Session Logger

The one-way path from components into the log sink.

Each component is handed the sink at construction time and wraps it in a
SessionLogger. Every emission goes to the standard logging module (console)
and is recorded into the sink under the component's store type.
"""

import logging
from typing import Any, Optional

from observability.log_entry import StoreType, normalize_level
from observability.sink import SessionLogSink, scrub


_STD_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SessionLogger:
    """Logger facade bound to one sink and store type."""

    def __init__(
        self,
        name: str,
        sink: Optional[SessionLogSink],
        store: StoreType = StoreType.BACKEND,
    ):
        self._logger = logging.getLogger(name)
        self._sink = sink
        self._store = store

    @property
    def sink(self) -> Optional[SessionLogSink]:
        return self._sink

    def log(self, level: str, message: str, **meta: Any) -> None:
        level = normalize_level(level)
        std_level = _STD_LEVELS[level]
        if self._logger.isEnabledFor(std_level):
            if meta:
                self._logger.log(std_level, f"{message} {scrub(meta)}")
            else:
                self._logger.log(std_level, message)
        if self._sink is not None:
            self._sink.record(level, message, meta, store=self._store)

    def debug(self, message: str, **meta: Any) -> None:
        self.log("debug", message, **meta)

    def info(self, message: str, **meta: Any) -> None:
        self.log("info", message, **meta)

    def warning(self, message: str, **meta: Any) -> None:
        self.log("warning", message, **meta)

    def error(self, message: str, **meta: Any) -> None:
        self.log("error", message, **meta)
