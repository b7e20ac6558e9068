"""AI chat: streamed questions plus chat history lookups."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..auth.credentials import CredentialStore
from ..core.config import ClientValves
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed
from ..models.api_models import ChatHistoryResponse, ChatMessagesResponse
from ..requests.executor import AuthenticatedRequestExecutor, RequestSpec
from ..streaming.events import Event, EventKind, StreamQuery
from ..streaming.stream_transport import ErrorSink, EventSink, StreamTransport


@dataclass(slots=True)
class ChatAnswer:
    """Answer assembled from one stream."""

    text: str = ""
    conversation_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    statuses: list[str] = field(default_factory=list)
    error_status: Optional[str] = None
    completed: bool = False

    @property
    def failed(self) -> bool:
        return self.error_status is not None


class _AnswerCollector:
    def __init__(self, future: asyncio.Future[ChatAnswer]) -> None:
        self._future = future
        self._parts: list[str] = []
        self.answer = ChatAnswer()

    def on_event(self, event: Event) -> None:
        if event.kind == EventKind.METADATA:
            self.answer.metadata = event.parsed_metadata
            self.answer.conversation_id = event.conversation_id or self.answer.conversation_id
        elif event.kind == EventKind.ANSWER:
            self._parts.append(event.payload)
        elif event.kind == EventKind.STATUS:
            self.answer.statuses.append(event.payload)
            if event.is_error_status and self.answer.error_status is None:
                self.answer.error_status = event.payload
        elif event.is_terminal:
            self.answer.completed = True

    def on_error(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    def finish(self) -> None:
        if self._future.done():
            return
        self.answer.text = "".join(self._parts)
        self._future.set_result(self.answer)


class ChatService:
    def __init__(
        self,
        executor: AuthenticatedRequestExecutor,
        transport: StreamTransport,
        store: CredentialStore,
        valves: ClientValves,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._executor = executor
        self._transport = transport
        self._store = store
        self.valves = valves
        self.logger = logger or SessionLogger.get_logger(__name__)

    @property
    def transport(self) -> StreamTransport:
        return self._transport

    def stream_query(self, query: StreamQuery, on_event: EventSink, on_error: ErrorSink) -> None:
        """Start streaming an answer with the stored credential (fire-and-forget)."""
        self._transport.start(query, self._store.get(), on_event, on_error)

    def cancel_stream(self) -> None:
        self._transport.cancel()

    @timed
    async def ask(self, query: StreamQuery) -> ChatAnswer:
        """Stream ``query`` to completion and return the assembled answer.

        Raises whatever error the stream surfaced. A cancelled stream yields
        the partial answer with ``completed`` left False.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ChatAnswer] = loop.create_future()
        collector = _AnswerCollector(future)
        self.stream_query(query, collector.on_event, collector.on_error)
        await self._transport.wait_closed()
        # No-op when the stream already failed through on_error.
        collector.finish()
        return await future

    @timed
    async def get_chat_history(self) -> ChatHistoryResponse:
        payload = await self._executor.execute(
            RequestSpec("GET", self.valves.chat_url("/chat/history"))
        )
        return ChatHistoryResponse.model_validate(payload or {})

    @timed
    async def get_chat_messages(
        self,
        chat_id: str,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ChatMessagesResponse:
        self.logger.debug("Fetching messages for chat %s (limit=%s, offset=%s)", chat_id, limit, offset)
        payload = await self._executor.execute(
            RequestSpec(
                "GET",
                self.valves.chat_url(f"/chat/{chat_id}/messages"),
                params={"limit": limit or self.valves.CHAT_MESSAGES_PAGE_SIZE, "offset": offset},
            )
        )
        return ChatMessagesResponse.model_validate(payload)


__all__ = ["ChatService", "ChatAnswer"]
