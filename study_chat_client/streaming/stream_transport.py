"""Single-flight streaming connection to the AI answer endpoint.

Each :meth:`StreamTransport.start` allocates a fresh :class:`StreamSession`
with its own generation number and parser, and implicitly cancels whatever
session was live before it. Every callback is gated on the session still
being the live one, so bytes that arrive late for a cancelled or superseded
session are dropped instead of reaching the parser or the caller's sinks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import aiohttp

from ..auth.credentials import Credential
from ..auth.refresh import SingleFlightRefresher
from ..core.errors import (
    UNAUTHORIZED_STATUS,
    AuthError,
    NetworkError,
    StudyChatError,
    build_remote_error,
)
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed, timing_mark
from ..core.utils import _consume_background_task_exception
from ..requests.executor import decode_body
from .constants import EVENT_STREAM_CONTENT_TYPE
from .events import Event, StreamQuery
from .sse_parser import EventFrameParser

EventSink = Callable[[Event], Any]
ErrorSink = Callable[[BaseException], Any]


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_ACTIVE_STATES = frozenset({StreamState.CONNECTING, StreamState.STREAMING})


@dataclass(slots=True, eq=False)
class StreamSession:
    """State owned by one call to :meth:`StreamTransport.start`."""

    generation: int
    query: StreamQuery
    parser: EventFrameParser
    is_retry: bool = False
    state: StreamState = StreamState.CONNECTING
    bytes_received: int = 0
    cancelled: bool = False
    response: Optional[aiohttp.ClientResponse] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not self.cancelled and self.state in _ACTIVE_STATES


class StreamTransport:
    """Owns at most one live answer stream and its refresh-and-retry cycle."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        refresher: SingleFlightRefresher,
        *,
        connect_timeout: Optional[float] = None,
        idle_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._http = session
        self._url = url
        self._refresher = refresher
        self._timeout = aiohttp.ClientTimeout(total=None, connect=connect_timeout, sock_read=idle_timeout)
        self.logger = logger or SessionLogger.get_logger(__name__)
        self._generation = 0
        self._current: Optional[StreamSession] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> StreamState:
        if self._current is None:
            return StreamState.IDLE
        return self._current.state

    def start(
        self,
        query: StreamQuery,
        credential: Optional[Credential],
        on_event: EventSink,
        on_error: ErrorSink,
    ) -> None:
        """Open a stream for ``query``; events arrive through ``on_event``.

        Returns immediately. A stream that is still connecting or streaming is
        cancelled first, so only one sink pair is ever live.
        """
        self._begin(query, credential, on_event, on_error, is_retry=False)

    def cancel(self) -> None:
        """Stop the live stream. No callback fires for it afterwards."""
        session = self._current
        if session is None or not session.active:
            return
        self.logger.info("Cancelling stream (generation %d)", session.generation)
        self._abort(session, cancel_task=True)
        session.state = StreamState.CANCELLED

    async def wait_closed(self) -> None:
        """Wait until the live stream, including an internal auth retry, finishes."""
        while True:
            session = self._current
            if session is None or session.task is None:
                return
            await asyncio.wait({session.task})
            if self._current is session:
                return

    def _begin(
        self,
        query: StreamQuery,
        credential: Optional[Credential],
        on_event: EventSink,
        on_error: ErrorSink,
        *,
        is_retry: bool,
    ) -> StreamSession:
        previous = self._current
        if previous is not None and previous.active:
            if is_retry:
                # The caller is the previous session's own task; it returns right after.
                self._abort(previous, cancel_task=False)
            else:
                self.logger.info("Superseding live stream (generation %d)", previous.generation)
                self._abort(previous, cancel_task=True)
                previous.state = StreamState.CANCELLED

        self._generation += 1
        session = StreamSession(
            generation=self._generation,
            query=query,
            parser=EventFrameParser(logger=self.logger),
            is_retry=is_retry,
        )
        self._current = session
        loop = asyncio.get_running_loop()
        session.task = loop.create_task(
            self._run(session, credential, on_event, on_error),
            name=f"study-chat-stream-{session.generation}",
        )
        session.task.add_done_callback(_consume_background_task_exception)
        return session

    def _abort(self, session: StreamSession, *, cancel_task: bool) -> None:
        session.cancelled = True
        response = session.response
        session.response = None
        if response is not None:
            response.close()
        if cancel_task and session.task is not None and not session.task.done():
            session.task.cancel()

    def _is_live(self, session: StreamSession) -> bool:
        return session.generation == self._generation and not session.cancelled

    async def _run(
        self,
        session: StreamSession,
        credential: Optional[Credential],
        on_event: EventSink,
        on_error: ErrorSink,
    ) -> None:
        with SessionLogger.request_context():
            try:
                unauthorized = await self._stream(session, credential, on_event)
                if unauthorized and self._is_live(session):
                    await self._retry_after_refresh(session, credential, on_event, on_error)
            except asyncio.CancelledError:
                self.logger.debug("Stream task cancelled (generation %d)", session.generation)
                raise
            except Exception as exc:
                self._fail(session, exc, on_error)
            finally:
                session.response = None

    @timed
    async def _stream(
        self,
        session: StreamSession,
        credential: Optional[Credential],
        on_event: EventSink,
    ) -> bool:
        """Run one connection attempt. Returns True when the server answered 401."""
        headers = {"Accept": EVENT_STREAM_CONTENT_TYPE}
        if credential is not None:
            headers.update(credential.authorization_header())
        self.logger.info("Starting stream query (generation %d)", session.generation)
        timing_mark("stream_connect", generation=session.generation)
        try:
            async with self._http.post(
                self._url,
                json=session.query.to_request_body(),
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                if not self._is_live(session):
                    return False
                session.response = resp
                if resp.status == UNAUTHORIZED_STATUS:
                    self.logger.info("Received 401 on stream, attempting to refresh token")
                    return True
                if not 200 <= resp.status < 300:
                    raw = await resp.read()
                    raise build_remote_error(resp.status, decode_body(raw))

                session.state = StreamState.STREAMING
                async for chunk in resp.content.iter_any():
                    if not self._is_live(session):
                        return False
                    session.bytes_received += len(chunk)
                    for event in session.parser.feed(chunk):
                        if not self._dispatch(session, event, on_event):
                            return False
        except asyncio.TimeoutError as exc:
            if not self._is_live(session):
                return False
            raise NetworkError("Stream timed out", cause=exc) from exc
        except aiohttp.ClientError as exc:
            if not self._is_live(session):
                return False
            raise NetworkError(str(exc) or "Network error occurred", cause=exc) from exc

        if not self._is_live(session):
            return False
        trailing = session.parser.flush()
        if trailing is not None and not self._dispatch(session, trailing, on_event):
            return False
        session.state = StreamState.COMPLETED
        self.logger.info(
            "Stream completed (generation %d, %d bytes, %d events)",
            session.generation,
            session.bytes_received,
            session.parser.events_emitted,
        )
        return False

    async def _retry_after_refresh(
        self,
        session: StreamSession,
        credential: Optional[Credential],
        on_event: EventSink,
        on_error: ErrorSink,
    ) -> None:
        if session.is_retry:
            self.logger.warning("Refreshed token rejected by stream endpoint; invalidating session")
            await self._refresher.invalidate()
            raise AuthError()
        rejected = credential.access_token if credential is not None else None
        refreshed = await self._refresher.refresh(rejected_access_token=rejected)
        if not self._is_live(session):
            return
        self.logger.info("Retrying stream with refreshed token")
        self._begin(session.query, refreshed, on_event, on_error, is_retry=True)

    def _dispatch(self, session: StreamSession, event: Event, on_event: EventSink) -> bool:
        if not self._is_live(session):
            return False
        on_event(event)
        # The sink may have cancelled or superseded this session.
        return self._is_live(session)

    def _fail(self, session: StreamSession, exc: BaseException, on_error: ErrorSink) -> None:
        if not self._is_live(session):
            return
        session.state = StreamState.FAILED
        if isinstance(exc, StudyChatError):
            self.logger.warning("Stream failed: %s", exc)
        else:
            self.logger.error("Unexpected stream failure: %s", exc, exc_info=exc)
        try:
            on_error(exc)
        except Exception:
            self.logger.exception("Stream error callback raised")


__all__ = ["StreamTransport", "StreamSession", "StreamState", "EventSink", "ErrorSink"]
