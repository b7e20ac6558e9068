"""Value types flowing through the streamed query path."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from .constants import STATUS_ERROR_MARKER


class EventKind(str, Enum):
    METADATA = "metadata"
    ANSWER = "answer"
    STATUS = "status"
    COMPLETE = "complete"


def _coerce_kind(value: str) -> Union[EventKind, str]:
    try:
        return EventKind(value)
    except ValueError:
        # Unknown kinds are passed through so newer servers don't break older clients.
        return value


@dataclass(frozen=True, slots=True)
class Event:
    """One finalized frame of the answer stream."""

    kind: Union[EventKind, str]
    payload: str
    parsed_metadata: Optional[dict[str, Any]] = None

    @classmethod
    def build(cls, kind: str, payload: str, parsed_metadata: Optional[dict[str, Any]] = None) -> "Event":
        return cls(kind=_coerce_kind(kind), payload=payload, parsed_metadata=parsed_metadata)

    @property
    def conversation_id(self) -> Optional[str]:
        """``chat_id`` announced by a metadata event, if any."""
        if self.kind != EventKind.METADATA or not self.parsed_metadata:
            return None
        chat_id = self.parsed_metadata.get("chat_id")
        return str(chat_id) if chat_id not in (None, "") else None

    @property
    def is_error_status(self) -> bool:
        """True for status events reporting a failure inside a 200 response."""
        return self.kind == EventKind.STATUS and STATUS_ERROR_MARKER in self.payload.lower()

    @property
    def is_terminal(self) -> bool:
        return self.kind == EventKind.COMPLETE


@dataclass(frozen=True, slots=True)
class StreamQuery:
    """Question sent to the AI answer endpoint."""

    question: str
    context_reference: str = ""
    conversation_id: Optional[str] = None

    def to_request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "question": self.question,
            "file_url": self.context_reference,
        }
        if self.conversation_id:
            body["chat_id"] = self.conversation_id
        return body


__all__ = ["EventKind", "Event", "StreamQuery"]
