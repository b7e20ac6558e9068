"""Error taxonomy shared by the request executor, stream transport and services.

Every failure surfaced to callers derives from :class:`StudyChatError` so UI
code can catch the whole family at once while still branching on the
specific subclasses (most notably :class:`EntitlementError`, which routes to
the paywall instead of a generic error toast).
"""

from __future__ import annotations

import json
from typing import Any, Optional

# Status the backend uses to signal a missing subscription or expired trial.
ENTITLEMENT_REQUIRED_STATUS = 402
UNAUTHORIZED_STATUS = 401


class StudyChatError(Exception):
    """Base class for all client-side failures."""


class NetworkError(StudyChatError):
    """Transport-level failure (DNS, connection reset, timeout)."""

    def __init__(self, message: str = "Network error occurred", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class AuthError(StudyChatError):
    """The credential was rejected and could not be refreshed."""

    def __init__(self, message: str = "Session expired. Please login again.") -> None:
        super().__init__(message)


class RemoteError(StudyChatError):
    """Non-2xx response other than the single retried 401."""

    def __init__(self, status: int, body: Any = None, message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or _message_from_body(body) or f"HTTP Error {status}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, body={self.body!r})"


class EntitlementError(RemoteError):
    """The user lacks an active subscription or trial (HTTP 402)."""

    def __init__(self, body: Any = None, message: Optional[str] = None) -> None:
        super().__init__(
            ENTITLEMENT_REQUIRED_STATUS,
            body,
            message or _message_from_body(body) or "Subscription required",
        )


class ProtocolError(StudyChatError):
    """A stream frame could not be interpreted."""


def _message_from_body(body: Any) -> Optional[str]:
    """Pull the server's ``message`` field out of an error body when present."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def build_remote_error(status: int, body: Any) -> RemoteError:
    """Classify a non-2xx status into the matching error type."""
    if status == ENTITLEMENT_REQUIRED_STATUS:
        return EntitlementError(body)
    return RemoteError(status, body)


__all__ = [
    "ENTITLEMENT_REQUIRED_STATUS",
    "UNAUTHORIZED_STATUS",
    "StudyChatError",
    "NetworkError",
    "AuthError",
    "RemoteError",
    "EntitlementError",
    "ProtocolError",
    "build_remote_error",
]
