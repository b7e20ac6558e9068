"""REST payload models."""

from __future__ import annotations

from .api_models import (
    ChatHistoryMessage,
    ChatHistoryResponse,
    ChatHistorySession,
    ChatMessagesResponse,
    Subscription,
    TokenResponse,
    VerificationResponse,
)

__all__ = [
    "ChatHistoryMessage",
    "ChatHistoryResponse",
    "ChatHistorySession",
    "ChatMessagesResponse",
    "Subscription",
    "TokenResponse",
    "VerificationResponse",
]
