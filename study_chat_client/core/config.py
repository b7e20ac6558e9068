"""Client configuration (valves).

``ClientValves`` follows the pipe convention of UPPER_CASE pydantic fields
with human-readable descriptions, so the same object can back a settings
screen and be overridden per deployment through environment variables.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_API_BASE_URL = "https://api.medlife.tj"
DEFAULT_CHAT_API_BASE_URL = "https://api.medlife.tj/agent/api"
ENV_PREFIX = "STUDY_CHAT_"

_DISABLED_VALUES = {"", "0", "none", "null", "disabled", "off"}


class ClientValves(BaseModel):
    """Tunable settings for :class:`~study_chat_client.client.StudyChatClient`."""

    API_BASE_URL: str = Field(
        default=DEFAULT_API_BASE_URL,
        description="Base URL for REST endpoints (auth, user, subscription).",
    )
    CHAT_API_BASE_URL: str = Field(
        default=DEFAULT_CHAT_API_BASE_URL,
        description="Base URL of the AI chat agent (streamed queries and chat history).",
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        ge=0,
        description="Seconds allowed to establish a TCP/TLS connection.",
    )
    HTTP_TOTAL_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        ge=0,
        description="Upper bound for a non-streaming request. Disabled (transport default) when unset.",
    )
    STREAM_IDLE_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        ge=0,
        description=(
            "Maximum silence between two chunks of a streamed answer before the stream fails "
            "with a network error. Disabled when unset."
        ),
    )
    HTTP_CONNECTION_LIMIT: int = Field(
        default=20,
        ge=1,
        description="Maximum simultaneous connections held by the shared HTTP session.",
    )
    HTTP_CONNECTION_LIMIT_PER_HOST: int = Field(
        default=10,
        ge=1,
        description="Maximum simultaneous connections per host.",
    )
    SUBSCRIPTION_POLL_MAX_ATTEMPTS: int = Field(
        default=30,
        ge=1,
        description="How many times the subscription status is checked before giving up.",
    )
    SUBSCRIPTION_POLL_INTERVAL_SECONDS: float = Field(
        default=2.0,
        ge=0,
        description="Fixed delay between subscription status checks.",
    )
    CHAT_MESSAGES_PAGE_SIZE: int = Field(
        default=50,
        ge=1,
        description="Default page size when loading chat messages.",
    )
    ENABLE_TIMING_LOG: bool = Field(
        default=False,
        description="Record call durations of instrumented functions on the timing logger.",
    )

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None, **overrides: Any) -> "ClientValves":
        """Build valves from ``STUDY_CHAT_<FIELD>`` variables, then explicit overrides."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(f"{ENV_PREFIX}{name}")
            if raw is None:
                continue
            raw = raw.strip()
            # Optional numeric fields accept "off"/"none" to disable the bound.
            if field.default is None and raw.lower() in _DISABLED_VALUES:
                values[name] = None
                continue
            values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)

    def chat_url(self, path: str) -> str:
        return self.CHAT_API_BASE_URL.rstrip("/") + "/" + path.lstrip("/")

    def api_url(self, path: str) -> str:
        return self.API_BASE_URL.rstrip("/") + "/" + path.lstrip("/")


__all__ = [
    "ClientValves",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_CHAT_API_BASE_URL",
    "ENV_PREFIX",
]
