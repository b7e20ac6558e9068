"""Authenticated non-streaming requests with a single refresh-and-retry.

The executor attaches the current bearer token, and on a 401 from the first
attempt asks the shared :class:`~study_chat_client.auth.refresh.SingleFlightRefresher`
for a new credential and replays the request exactly once. Whatever the replay
returns is final.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import aiohttp

from ..auth.credentials import Credential, CredentialStore
from ..auth.refresh import SingleFlightRefresher
from ..core.errors import (
    UNAUTHORIZED_STATUS,
    AuthError,
    NetworkError,
    build_remote_error,
)
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed


@dataclass(frozen=True, slots=True)
class RequestSpec:
    """Everything needed to (re-)issue one HTTP request."""

    method: str
    url: str
    json_body: Any = None
    params: Optional[Mapping[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    authenticated: bool = True

    def describe(self) -> str:
        return f"{self.method.upper()} {self.url}"


def _normalize_params(params: Optional[Mapping[str, Any]]) -> Optional[dict[str, str]]:
    if not params:
        return None
    normalized: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        else:
            normalized[key] = str(value)
    return normalized


def decode_body(raw: bytes) -> Any:
    """Decode a response body: JSON when possible, text otherwise, ``None`` when empty."""
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class AuthenticatedRequestExecutor:
    """Runs :class:`RequestSpec` requests under the refresh-and-retry policy."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: CredentialStore,
        refresher: SingleFlightRefresher,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._store = store
        self._refresher = refresher
        self.logger = logger or SessionLogger.get_logger(__name__)

    @timed
    async def execute(self, spec: RequestSpec, credential: Optional[Credential] = None) -> Any:
        """Issue ``spec`` and return the decoded body.

        Raises:
            AuthError: no credential, refresh failed, or the replay was also rejected.
            EntitlementError: the endpoint requires an active subscription (402).
            RemoteError: any other non-2xx response.
            NetworkError: transport failure or timeout.
        """
        if not spec.authenticated:
            status, body = await self._send(spec, None)
            return self._finalize(spec, status, body)

        credential = credential or self._store.get()
        if credential is None:
            raise AuthError("Not signed in")

        status, body = await self._send(spec, credential.access_token)
        if status != UNAUTHORIZED_STATUS:
            return self._finalize(spec, status, body)

        self.logger.info("Received 401 for %s, attempting to refresh token", spec.describe())
        refreshed = await self._refresher.refresh(rejected_access_token=credential.access_token)

        self.logger.debug("Retrying %s with refreshed token", spec.describe())
        status, body = await self._send(spec, refreshed.access_token)
        if status == UNAUTHORIZED_STATUS:
            self.logger.warning("Refreshed token rejected for %s; invalidating session", spec.describe())
            await self._refresher.invalidate()
            raise AuthError()
        return self._finalize(spec, status, body)

    async def _send(self, spec: RequestSpec, access_token: Optional[str]) -> tuple[int, Any]:
        headers = {"Accept": "application/json", **dict(spec.headers)}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        kwargs: dict[str, Any] = {"headers": headers}
        if spec.json_body is not None:
            kwargs["json"] = spec.json_body
        params = _normalize_params(spec.params)
        if params:
            kwargs["params"] = params
        try:
            async with self._session.request(spec.method.upper(), spec.url, **kwargs) as resp:
                raw = await resp.read()
                status = resp.status
        except asyncio.TimeoutError as exc:
            self.logger.warning("Request timed out: %s", spec.describe())
            raise NetworkError("Request timed out", cause=exc) from exc
        except aiohttp.ClientError as exc:
            self.logger.warning("Network error for %s: %s", spec.describe(), exc)
            raise NetworkError(str(exc) or "Network error occurred", cause=exc) from exc
        self.logger.debug("Response status %s for %s", status, spec.describe())
        return status, decode_body(raw)

    def _finalize(self, spec: RequestSpec, status: int, body: Any) -> Any:
        if 200 <= status < 300:
            return body
        error = build_remote_error(status, body)
        self.logger.warning("HTTP error %s for %s: %s", status, spec.describe(), error)
        raise error


__all__ = ["AuthenticatedRequestExecutor", "RequestSpec", "decode_body"]
