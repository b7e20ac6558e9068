"""Client core for the academic platform's AI chat and account services.

The package is organized by subsystem:
- core: configuration valves, error taxonomy, logging and timing helpers
- auth: credential value/store and the single-flight refresher
- requests: authenticated non-streaming request executor
- streaming: event frame parser and the answer stream transport
- services: auth, chat and subscription calls built on the above
"""

from __future__ import annotations

from .auth import Credential, CredentialStore, InMemoryCredentialStore, SingleFlightRefresher
from .client import StudyChatClient
from .core.config import ClientValves
from .core.errors import (
    AuthError,
    EntitlementError,
    NetworkError,
    ProtocolError,
    RemoteError,
    StudyChatError,
)
from .requests import AuthenticatedRequestExecutor, RequestSpec
from .streaming import Event, EventFrameParser, EventKind, StreamQuery, StreamState, StreamTransport

__all__ = [
    "StudyChatClient",
    "ClientValves",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "SingleFlightRefresher",
    "AuthenticatedRequestExecutor",
    "RequestSpec",
    "Event",
    "EventKind",
    "EventFrameParser",
    "StreamQuery",
    "StreamState",
    "StreamTransport",
    "StudyChatError",
    "NetworkError",
    "AuthError",
    "RemoteError",
    "EntitlementError",
    "ProtocolError",
]
