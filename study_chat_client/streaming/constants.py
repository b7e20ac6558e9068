"""Wire-level constants for the streamed query protocol."""

from __future__ import annotations

STREAM_QUERY_PATH = "/query/stream"
EVENT_STREAM_CONTENT_TYPE = "text/event-stream"

EVENT_FIELD_PREFIX = "event:"
DATA_FIELD_PREFIX = "data:"

# Substring a status payload carries when the server failed mid-answer.
STATUS_ERROR_MARKER = "error"

# Payloads longer than this are only logged by length.
LOG_PREVIEW_CHARS = 200

__all__ = [
    "STREAM_QUERY_PATH",
    "EVENT_STREAM_CONTENT_TYPE",
    "EVENT_FIELD_PREFIX",
    "DATA_FIELD_PREFIX",
    "STATUS_ERROR_MARKER",
    "LOG_PREVIEW_CHARS",
]
