"""Top-level client wiring the credential, request and streaming subsystems.

This module defines :class:`StudyChatClient`, which:
- owns the shared aiohttp session and the configuration valves
- builds the single-flight refresher, request executor and stream transport
- exposes the auth, chat and subscription services built on top of them
- turns a failed refresh into one local sign-out plus the caller's callback

Subsystems receive their collaborators through their constructors; nothing is
registered globally, so several clients can coexist (one per account, or one
per test).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import aiohttp

from .auth.credentials import CredentialStore, InMemoryCredentialStore
from .auth.refresh import RefreshCallable, SingleFlightRefresher
from .core.config import ClientValves
from .core.logging_system import SessionLogger
from .core.timing_logger import configure_timing, timed
from .core.utils import _await_if_needed
from .requests.executor import AuthenticatedRequestExecutor
from .services.auth_service import AuthService
from .services.chat_service import ChatService
from .services.subscription_service import SubscriptionService
from .streaming.constants import STREAM_QUERY_PATH
from .streaming.events import StreamQuery
from .streaming.stream_transport import ErrorSink, EventSink, StreamTransport


class StudyChatClient:
    """Entry point for applications talking to the platform.

    Usage::

        async with StudyChatClient(store=store, on_session_invalidated=show_login) as client:
            client.chat.stream_query(StreamQuery("What is mitosis?", file_url), on_event, on_error)

    Lifecycle:
    1. ``__init__`` only records configuration; no I/O, no event loop needed.
    2. The first ``await client.start()`` (or ``async with``) creates the HTTP
       session and every subsystem.
    3. ``close()`` cancels any live stream and closes the session.
    """

    def __init__(
        self,
        valves: Optional[ClientValves] = None,
        *,
        store: Optional[CredentialStore] = None,
        on_session_invalidated: Optional[Callable[[], Any]] = None,
        refresh_credential: Optional[RefreshCallable] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.valves = valves or ClientValves()
        self.store: CredentialStore = store if store is not None else InMemoryCredentialStore()
        self.logger = logger or SessionLogger.get_logger(__name__)
        self._on_session_invalidated = on_session_invalidated
        self._refresh_override = refresh_credential

        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._init_lock: Optional[asyncio.Lock] = None
        self._initialized = False
        self._closed = False

        self._refresher: Optional[SingleFlightRefresher] = None
        self._executor: Optional[AuthenticatedRequestExecutor] = None
        self._transport: Optional[StreamTransport] = None
        self._auth_service: Optional[AuthService] = None
        self._chat_service: Optional[ChatService] = None
        self._subscription_service: Optional[SubscriptionService] = None

        if self.valves.ENABLE_TIMING_LOG:
            configure_timing(True)

        self.logger.debug("StudyChatClient configured (api=%s, chat=%s)", self.valves.API_BASE_URL, self.valves.CHAT_API_BASE_URL)

    async def __aenter__(self) -> "StudyChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @timed
    async def start(self) -> None:
        """Create the HTTP session and subsystems (idempotent)."""
        if self._closed:
            raise RuntimeError("StudyChatClient is closed")
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._initialized:
                return
            if self._http_session is None:
                self._http_session = self._create_http_session()
            self._build_subsystems(self._http_session)
            self._initialized = True

    def _create_http_session(self) -> aiohttp.ClientSession:
        """Return a ClientSession with connector limits and timeouts from the valves."""
        valves = self.valves
        connector = aiohttp.TCPConnector(
            limit=valves.HTTP_CONNECTION_LIMIT,
            limit_per_host=valves.HTTP_CONNECTION_LIMIT_PER_HOST,
            keepalive_timeout=75,
            ttl_dns_cache=300,
        )
        timeout = aiohttp.ClientTimeout(
            total=valves.HTTP_TOTAL_TIMEOUT_SECONDS,
            connect=valves.HTTP_CONNECT_TIMEOUT_SECONDS,
        )
        self.logger.debug(
            "HTTP timeouts: connect=%ss total=%s stream_idle=%s",
            valves.HTTP_CONNECT_TIMEOUT_SECONDS,
            valves.HTTP_TOTAL_TIMEOUT_SECONDS if valves.HTTP_TOTAL_TIMEOUT_SECONDS is not None else "disabled",
            valves.STREAM_IDLE_TIMEOUT_SECONDS if valves.STREAM_IDLE_TIMEOUT_SECONDS is not None else "disabled",
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            json_serialize=json.dumps,
        )

    def _build_subsystems(self, session: aiohttp.ClientSession) -> None:
        # The refresher needs the auth service and the auth service needs the
        # executor, which needs the refresher; defer the lookup to call time.
        async def _refresh_via_auth_service():
            assert self._auth_service is not None
            return await self._auth_service.refresh_credential()

        self._refresher = SingleFlightRefresher(
            self.store,
            self._refresh_override or _refresh_via_auth_service,
            self._handle_session_invalidated,
            logger=self.logger,
        )
        self._executor = AuthenticatedRequestExecutor(session, self.store, self._refresher, logger=self.logger)
        self._transport = StreamTransport(
            session,
            self.valves.chat_url(STREAM_QUERY_PATH),
            self._refresher,
            connect_timeout=self.valves.HTTP_CONNECT_TIMEOUT_SECONDS,
            idle_timeout=self.valves.STREAM_IDLE_TIMEOUT_SECONDS,
            logger=self.logger,
        )
        self._auth_service = AuthService(self._executor, self.store, self.valves, logger=self.logger)
        self._chat_service = ChatService(self._executor, self._transport, self.store, self.valves, logger=self.logger)
        self._subscription_service = SubscriptionService(
            self._executor, self.store, self.valves, logger=self.logger
        )

    async def _handle_session_invalidated(self) -> None:
        self.logger.info("Session invalidated; clearing stored credential")
        self.store.clear()
        if self._on_session_invalidated is not None:
            await _await_if_needed(self._on_session_invalidated())

    def _require(self, value: Optional[Any], name: str) -> Any:
        if value is None:
            raise RuntimeError(f"StudyChatClient.{name} is unavailable until start() has completed")
        return value

    @property
    def refresher(self) -> SingleFlightRefresher:
        return self._require(self._refresher, "refresher")

    @property
    def executor(self) -> AuthenticatedRequestExecutor:
        return self._require(self._executor, "executor")

    @property
    def transport(self) -> StreamTransport:
        return self._require(self._transport, "transport")

    @property
    def auth(self) -> AuthService:
        return self._require(self._auth_service, "auth")

    @property
    def chat(self) -> ChatService:
        return self._require(self._chat_service, "chat")

    @property
    def subscriptions(self) -> SubscriptionService:
        return self._require(self._subscription_service, "subscriptions")

    async def stream_query(self, query: StreamQuery, on_event: EventSink, on_error: ErrorSink) -> None:
        """Initialize if needed, then start streaming ``query``."""
        await self.start()
        self.chat.stream_query(query, on_event, on_error)

    def cancel_stream(self) -> None:
        if self._transport is not None:
            self._transport.cancel()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.cancel_stream()
        if self._transport is not None:
            await self._transport.wait_closed()
        if self._owns_http_session and self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
        self.logger.debug("StudyChatClient closed")


__all__ = ["StudyChatClient"]
