"""Streaming response processing subsystem.

This package contains streaming-related functionality:
- sse_parser: incremental event frame parsing
- stream_transport: the single live answer stream and its auth retry
- events: Event and StreamQuery value types
"""

from .events import Event, EventKind, StreamQuery
from .sse_parser import EventFrameParser
from .stream_transport import StreamSession, StreamState, StreamTransport

__all__ = [
    "Event",
    "EventKind",
    "StreamQuery",
    "EventFrameParser",
    "StreamSession",
    "StreamState",
    "StreamTransport",
]
