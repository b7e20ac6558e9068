"""Incremental parser for the answer stream's event frames.

Frames look like::

    event: answer
    data: first line
    continued line
    <blank>

A frame starts at an ``event:`` line, collects ``data:`` lines, and ends at a
blank line (or at end of stream, see :meth:`EventFrameParser.flush`). Lines
without a recognized prefix inside a data block continue the previous data
line; the server relies on this instead of escaping multi-line payloads.

The transport may split bytes anywhere, including inside a line or inside a
multi-byte character, so the parser keeps the unprocessed tail and all
pending frame state between calls to :meth:`EventFrameParser.feed`.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Optional, Union

from ..core.errors import ProtocolError
from ..core.logging_system import SessionLogger
from .constants import DATA_FIELD_PREFIX, EVENT_FIELD_PREFIX, LOG_PREVIEW_CHARS
from .events import Event, EventKind


class EventFrameParser:
    """Turns a chunked byte stream into :class:`Event` objects, in order.

    Lines that fit no frame are logged and skipped. With ``strict=True`` they
    raise :class:`~study_chat_client.core.errors.ProtocolError` instead; the
    parser state is undefined afterwards.
    """

    __slots__ = (
        "logger",
        "_strict",
        "_decoder",
        "_tail",
        "_kind",
        "_segments",
        "_in_data",
        "bytes_consumed",
        "events_emitted",
    )

    def __init__(self, *, strict: bool = False, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or SessionLogger.get_logger(__name__)
        self._strict = strict
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tail = ""
        self._kind: Optional[str] = None
        self._segments: list[str] = []
        self._in_data = False
        self.bytes_consumed = 0
        self.events_emitted = 0

    def feed(self, data: Union[bytes, bytearray, memoryview, str]) -> list[Event]:
        """Consume the next chunk and return every frame it completed."""
        if isinstance(data, str):
            text = data
            self.bytes_consumed += len(data.encode("utf-8"))
        else:
            chunk = bytes(data)
            self.bytes_consumed += len(chunk)
            text = self._decoder.decode(chunk)
        if not text:
            return []

        lines = (self._tail + text).split("\n")
        # The last element has no newline yet; keep it for the next chunk.
        self._tail = lines.pop()

        events: list[Event] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> Optional[Event]:
        """Finish the stream, emitting a final frame that lacked a blank line."""
        remainder = self._tail + self._decoder.decode(b"", final=True)
        self._tail = ""
        emitted: Optional[Event] = None
        if remainder:
            emitted = self._process_line(remainder)
        if emitted is None and self._kind is not None and self._segments:
            emitted = self._finalize()
        self._reset()
        return emitted

    def _process_line(self, line: str) -> Optional[Event]:
        stripped = line.strip()

        if stripped.startswith(EVENT_FIELD_PREFIX):
            emitted = self._finalize() if self._kind is not None and self._segments else None
            name = stripped[len(EVENT_FIELD_PREFIX):].strip()
            if not name:
                self.logger.debug("Ignoring event line without a kind")
            # An event line with no data yet is replaced, not emitted empty.
            self._kind = name or None
            self._segments = []
            self._in_data = False
            return emitted

        if stripped.startswith(DATA_FIELD_PREFIX):
            if self._kind is None:
                self._malformed("data line outside an event frame", stripped)
                return None
            self._segments.append(stripped[len(DATA_FIELD_PREFIX):].strip())
            self._in_data = True
            return None

        if not stripped:
            if self._in_data and self._kind is not None and self._segments:
                return self._finalize()
            return None

        if self._in_data and self._segments:
            self._segments[-1] = f"{self._segments[-1]}\n{stripped}"
        else:
            self._malformed("unrecognized line outside a data block", stripped)
        return None

    def _malformed(self, reason: str, line: str) -> None:
        preview = line[:LOG_PREVIEW_CHARS]
        if self._strict:
            raise ProtocolError(f"Malformed event stream: {reason}: {preview!r}")
        self.logger.warning("Skipping %s: %r", reason, preview)

    def _finalize(self) -> Event:
        kind = self._kind or ""
        payload = "\n".join(self._segments)
        self._kind = None
        self._segments = []
        self._in_data = False

        parsed: Optional[dict[str, Any]] = None
        if kind == EventKind.METADATA.value:
            parsed = self._parse_metadata(payload)

        self.events_emitted += 1
        if len(payload) < LOG_PREVIEW_CHARS:
            self.logger.debug("Event %s: %r", kind, payload)
        else:
            self.logger.debug("Event %s (%d chars)", kind, len(payload))
        return Event.build(kind, payload, parsed)

    def _parse_metadata(self, payload: str) -> Optional[dict[str, Any]]:
        try:
            value = json.loads(payload)
        except ValueError as exc:
            self.logger.warning("Failed to parse metadata payload: %s", exc)
            return None
        if not isinstance(value, dict):
            self.logger.warning("Metadata payload is not an object: %s", type(value).__name__)
            return None
        return value

    def _reset(self) -> None:
        self._kind = None
        self._segments = []
        self._in_data = False


__all__ = ["EventFrameParser"]
