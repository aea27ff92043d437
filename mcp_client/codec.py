"""
Line Codec

Incremental newline-delimited JSON-RPC 2.0 framing.

DESIGN RULES:
- Buffers bytes, never text: a multi-byte character split across
  chunks decodes the same as when it arrives whole
- A partial trailing line is never parsed
- Every complete non-empty line produces exactly one event
- Decode errors and protocol errors are distinct event types
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Union


JSONRPC_VERSION = "2.0"


@dataclass(frozen=True)
class MessageEvent:
    """A well-formed JSON-RPC 2.0 message."""
    message: Dict[str, Any]
    raw: str


@dataclass(frozen=True)
class DecodeErrorEvent:
    """A line that is not a JSON object."""
    raw: str
    error: str


@dataclass(frozen=True)
class ProtocolErrorEvent:
    """A JSON object that is not a valid JSON-RPC 2.0 message."""
    raw: str
    message: Dict[str, Any]
    reason: str


CodecEvent = Union[MessageEvent, DecodeErrorEvent, ProtocolErrorEvent]


def encode(message: Dict[str, Any]) -> bytes:
    """Serialize a message into one newline-terminated frame."""
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")


def decode_line(line: bytes) -> CodecEvent:
    """Decode one complete line (without its newline)."""
    try:
        text = line.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        return DecodeErrorEvent(raw=line.decode("utf-8", errors="replace"), error=str(e))

    try:
        message = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        return DecodeErrorEvent(raw=text, error=str(e))

    if not isinstance(message, dict):
        return DecodeErrorEvent(raw=text, error="message is not a JSON object")

    version = message.get("jsonrpc")
    if version != JSONRPC_VERSION:
        return ProtocolErrorEvent(
            raw=text,
            message=message,
            reason=f"unsupported jsonrpc version: {version!r}",
        )

    return MessageEvent(message=message, raw=text)


class LineCodec:
    """
    Stateful decoder for one byte stream.

    One instance per stream; not shared between processes.
    """

    def __init__(self) -> None:
        self._buffer = b""

    @property
    def pending_bytes(self) -> int:
        """Bytes held back waiting for a newline."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[CodecEvent]:
        """
        Append bytes and decode every complete line.

        Args:
            data: Next chunk from the stream (any size, may be empty)

        Returns:
            Events for the complete lines, in stream order
        """
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")

        events: List[CodecEvent] = []
        for line in lines:
            if not line.strip():
                continue
            events.append(decode_line(line))
        return events

    def flush(self) -> List[CodecEvent]:
        """Decode whatever is left once the stream has ended."""
        remainder, self._buffer = self._buffer, b""
        if not remainder.strip():
            return []
        return [decode_line(remainder)]

    encode = staticmethod(encode)
