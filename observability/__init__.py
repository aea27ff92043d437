# Observability Package
from observability.log_entry import LogEntry, LogScope, StoreType, SYSTEM_SESSION_ID
from observability.classifier import classify, DEFAULT_SYSTEM_KEYWORDS
from observability.sink import SessionLogSink
from observability.emitter import SessionLogger

__all__ = [
    "LogEntry",
    "LogScope",
    "StoreType",
    "SYSTEM_SESSION_ID",
    "classify",
    "DEFAULT_SYSTEM_KEYWORDS",
    "SessionLogSink",
    "SessionLogger",
]
