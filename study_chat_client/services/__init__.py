"""Service layer over the request executor and stream transport."""

from __future__ import annotations

from .auth_service import AuthService
from .chat_service import ChatAnswer, ChatService
from .subscription_service import SubscriptionPollResult, SubscriptionService

__all__ = [
    "AuthService",
    "ChatService",
    "ChatAnswer",
    "SubscriptionService",
    "SubscriptionPollResult",
]
