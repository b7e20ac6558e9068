"""Core building blocks: valves, errors, logging and timing."""

from __future__ import annotations

from .config import ClientValves
from .errors import (
    AuthError,
    EntitlementError,
    NetworkError,
    ProtocolError,
    RemoteError,
    StudyChatError,
    build_remote_error,
)
from .logging_system import SessionLogger
from .timing_logger import configure_timing, timed, timing_mark

__all__ = [
    "ClientValves",
    "StudyChatError",
    "NetworkError",
    "AuthError",
    "RemoteError",
    "EntitlementError",
    "ProtocolError",
    "build_remote_error",
    "SessionLogger",
    "configure_timing",
    "timed",
    "timing_mark",
]
