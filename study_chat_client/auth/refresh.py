"""Single-flight credential refresh shared by every authenticated request path.

Most refresh-token schemes rotate the refresh token on use, so two refreshes
racing from the same stale token would leave one of them holding a dead
token and log the user out. :class:`SingleFlightRefresher` guarantees that at
most one refresh call is in flight; every caller that discovers an expired
credential while it runs awaits the same outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..core.errors import AuthError
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed
from ..core.utils import _await_if_needed, _consume_background_task_exception
from .credentials import Credential, CredentialStore

RefreshCallable = Callable[[], Awaitable[Credential]]
InvalidationCallback = Callable[[], Any]


class SingleFlightRefresher:
    """Coordinates credential refresh and session invalidation."""

    def __init__(
        self,
        store: CredentialStore,
        refresh_credential: RefreshCallable,
        on_session_invalidated: Optional[InvalidationCallback] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._refresh_credential = refresh_credential
        self._on_session_invalidated = on_session_invalidated
        self.logger = logger or SessionLogger.get_logger(__name__)
        self._inflight: Optional[asyncio.Task[Credential]] = None

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @timed
    async def refresh(self, rejected_access_token: Optional[str] = None) -> Credential:
        """Return a fresh credential, joining an in-flight refresh when one exists.

        ``rejected_access_token`` is the token the caller just saw rejected. When
        the store already holds a different token, another caller refreshed in
        the meantime and that credential is returned without a new round trip.

        Raises:
            AuthError: the refresh failed; the session has been invalidated.
        """
        if self._inflight is None:
            current = self._store.get()
            if (
                rejected_access_token is not None
                and current is not None
                and current.access_token != rejected_access_token
            ):
                self.logger.debug("Credential already rotated by a concurrent refresh; reusing it")
                return current
            loop = asyncio.get_running_loop()
            self._inflight = loop.create_task(self._run_refresh(), name="study-chat-refresh")
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            self.logger.debug("Refresh already in flight; awaiting its outcome")
        # Shield so one caller being cancelled never aborts the shared refresh.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        _consume_background_task_exception(task)
        if self._inflight is task:
            self._inflight = None

    async def _run_refresh(self) -> Credential:
        self.logger.info("Refreshing access token")
        try:
            credential = await self._refresh_credential()
        except AuthError as exc:
            await self._fail(str(exc))
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Token refresh failed: %s", exc)
            await self._fail("Authentication failed - unable to refresh token")
            raise AuthError("Authentication failed - unable to refresh token") from exc
        if not isinstance(credential, Credential):
            await self._fail("Refresh returned no credential")
            raise AuthError("Authentication failed - unable to refresh token")
        self._store.set(credential)
        self.logger.info("Token refreshed successfully")
        return credential

    async def _fail(self, reason: str) -> None:
        self.logger.warning("Token refresh failed (%s); invalidating session", reason)
        await self.invalidate()

    async def invalidate(self) -> None:
        """Signal the session-lifecycle collaborator that the session is over."""
        if self._on_session_invalidated is None:
            return
        try:
            await _await_if_needed(self._on_session_invalidated())
        except Exception:
            self.logger.exception("Session invalidation callback failed")


__all__ = ["SingleFlightRefresher", "RefreshCallable", "InvalidationCallback"]
