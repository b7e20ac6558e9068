"""Credential value type and the store interface the core reads it from."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, runtime_checkable


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True, slots=True)
class Credential:
    """Access/refresh token pair issued by sign-in or refresh."""

    access_token: str
    refresh_token: str
    expires_at: datetime.datetime

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        *,
        now: Optional[datetime.datetime] = None,
    ) -> "Credential":
        """Build a credential from ``{access_token, refresh_token, expires_in}``."""
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response is missing access_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValueError("token response is missing refresh_token")
        try:
            expires_in = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        issued = now or _utcnow()
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued + datetime.timedelta(seconds=max(expires_in, 0.0)),
        )

    def is_expired(self, *, leeway_seconds: float = 0.0, now: Optional[datetime.datetime] = None) -> bool:
        current = now or _utcnow()
        return current + datetime.timedelta(seconds=leeway_seconds) >= self.expires_at

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def __repr__(self) -> str:
        # Never leak tokens into logs.
        return f"Credential(access_token='***', refresh_token='***', expires_at={self.expires_at.isoformat()})"


@runtime_checkable
class CredentialStore(Protocol):
    """Holder of the current credential, owned by the authentication layer."""

    def get(self) -> Optional[Credential]: ...

    def set(self, credential: Credential) -> None: ...

    def clear(self) -> None: ...


class InMemoryCredentialStore:
    """Process-local :class:`CredentialStore`; persistence is left to the app."""

    def __init__(self, credential: Optional[Credential] = None) -> None:
        self._credential = credential

    def get(self) -> Optional[Credential]:
        return self._credential

    def set(self, credential: Credential) -> None:
        self._credential = credential

    def clear(self) -> None:
        self._credential = None


__all__ = ["Credential", "CredentialStore", "InMemoryCredentialStore"]
