"""Pydantic models for REST payloads exchanged with the platform."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    # The backend adds fields freely; keep them rather than failing validation.
    model_config = ConfigDict(extra="allow")


class SignInRequest(_ApiModel):
    phone: str
    password: str


class VerifyRequest(_ApiModel):
    txn_id: str
    verify_code: str


class TokenResponse(_ApiModel):
    access_token: str
    refresh_token: str
    expires_in: int = 0


class VerificationResponse(_ApiModel):
    message: str = ""
    txn_id: str


class ChatHistorySession(_ApiModel):
    id: str
    user_id: Optional[int] = None
    title: str = ""
    message_count: int = 0
    created_at: str = ""
    updated_at: str = ""


class ChatHistoryResponse(_ApiModel):
    count: int = 0
    sessions: list[ChatHistorySession] = Field(default_factory=list)


class ChatHistoryMessage(_ApiModel):
    id: int
    role: Literal["user", "assistant"]
    content: str = ""
    sequence_num: int = 0
    created_at: str = ""


class Pagination(_ApiModel):
    has_more: bool = False
    limit: int = 0
    offset: int = 0


class ChatMessagesResponse(_ApiModel):
    chat_id: str
    count: int = 0
    messages: list[ChatHistoryMessage] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
    title: str = ""
    total_messages: int = 0


SubscriptionStatus = Literal["pending", "active", "expired", "rejected"]


class Subscription(_ApiModel):
    id: int
    price: float = 0
    start_date: str = ""
    end_date: str = ""
    proof_photo: str = ""
    status: SubscriptionStatus = "pending"
    is_active: bool = False
    days_remaining: int = 0
    created_at: str = ""
    updated_at: str = ""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None

    @property
    def is_active_subscription(self) -> bool:
        return self.status == "active" and self.is_active

    def token_response(self) -> Optional[TokenResponse]:
        """Tokens re-issued with the subscription (``with_token=true``), if any."""
        if not (self.access_token and self.refresh_token):
            return None
        return TokenResponse(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_in=self.expires_in or 0,
        )


__all__ = [
    "SignInRequest",
    "VerifyRequest",
    "TokenResponse",
    "VerificationResponse",
    "ChatHistorySession",
    "ChatHistoryResponse",
    "ChatHistoryMessage",
    "Pagination",
    "ChatMessagesResponse",
    "Subscription",
    "SubscriptionStatus",
]
