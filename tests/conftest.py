"""Shared fixtures: credentials, a real event-stream server, and HTTP sessions."""

from __future__ import annotations

import asyncio
import datetime
from typing import Any, Awaitable, Callable, Optional

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from study_chat_client.auth.credentials import Credential, InMemoryCredentialStore
from study_chat_client.streaming.events import Event

Responder = Callable[[web.Request], Awaitable[web.StreamResponse]]


def make_credential(access: str = "access-1", refresh: str = "refresh-1", *, expires_in: float = 3600) -> Credential:
    return Credential(
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=expires_in),
    )


def sse_responder(
    *chunks: bytes,
    hold: Optional[asyncio.Event] = None,
    hold_after: int = 0,
    status: int = 200,
) -> Responder:
    """Build a handler that streams ``chunks``; optionally pause after ``hold_after`` of them."""

    async def _respond(request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(status=status, headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        try:
            for index, chunk in enumerate(chunks):
                if hold is not None and index == hold_after:
                    await hold.wait()
                await response.write(chunk)
                # Give the client a chance to read each chunk separately.
                await asyncio.sleep(0.01)
            await response.write_eof()
        except (ConnectionResetError, asyncio.CancelledError):
            pass
        return response

    return _respond


def status_responder(status: int, payload: Any = None) -> Responder:
    async def _respond(request: web.Request) -> web.StreamResponse:
        if payload is None:
            return web.Response(status=status)
        return web.json_response(payload, status=status)

    return _respond


class Recorder:
    """Collects sink callbacks and lets a test wait for the first event."""

    def __init__(self) -> None:
        self.events: list[Event] = []
        self.errors: list[BaseException] = []
        self.first_event = asyncio.Event()

    def on_event(self, event: Event) -> None:
        self.events.append(event)
        self.first_event.set()

    def on_error(self, exc: BaseException) -> None:
        self.errors.append(exc)

    @property
    def payloads(self) -> list[str]:
        return [event.payload for event in self.events]


class StreamBackend:
    """Answer-stream endpoint that replays queued responders in order."""

    def __init__(self) -> None:
        self.responders: list[Responder] = []
        self.requests: list[dict[str, Any]] = []
        self.server: Optional[TestServer] = None

    def queue(self, *responders: Responder) -> None:
        self.responders.extend(responders)

    @property
    def url(self) -> str:
        assert self.server is not None
        return str(self.server.make_url("/agent/api/query/stream"))

    @property
    def base_url(self) -> str:
        assert self.server is not None
        return str(self.server.make_url("/agent/api"))

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(
            {
                "authorization": request.headers.get("Authorization"),
                "accept": request.headers.get("Accept"),
                "body": await request.json(),
            }
        )
        if not self.responders:
            return web.Response(status=500, text="no responder queued")
        return await self.responders.pop(0)(request)


@pytest.fixture
def credential() -> Credential:
    return make_credential()


@pytest.fixture
def store(credential: Credential) -> InMemoryCredentialStore:
    return InMemoryCredentialStore(credential)


@pytest_asyncio.fixture
async def stream_backend():
    backend = StreamBackend()
    app = web.Application()
    app.router.add_post("/agent/api/query/stream", backend.handle)
    server = TestServer(app)
    await server.start_server()
    backend.server = server
    try:
        yield backend
    finally:
        await server.close()


@pytest_asyncio.fixture
async def http_session():
    session = aiohttp.ClientSession()
    try:
        yield session
    finally:
        await session.close()
