"""Tests for the auth, chat and subscription services."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest
from aioresponses import CallbackResult, aioresponses

from study_chat_client.auth.credentials import InMemoryCredentialStore
from study_chat_client.auth.refresh import SingleFlightRefresher
from study_chat_client.core.config import ClientValves
from study_chat_client.core.errors import AuthError, EntitlementError, RemoteError
from study_chat_client.models.api_models import VerificationResponse
from study_chat_client.requests.executor import AuthenticatedRequestExecutor
from study_chat_client.services.auth_service import AuthService
from study_chat_client.services.chat_service import ChatService
from study_chat_client.services.subscription_service import SubscriptionService
from study_chat_client.streaming.events import StreamQuery
from study_chat_client.streaming.stream_transport import StreamTransport

from .conftest import make_credential, sse_responder, status_responder

API = "https://api.example.test"
CHAT_API = "https://chat.example.test/agent/api"
VALVES = ClientValves(API_BASE_URL=API, CHAT_API_BASE_URL=CHAT_API)
SUBSCRIPTION_URL = f"{API}/user/subscription/current?with_token=false"

TOKENS = {"access_token": "issued-access", "refresh_token": "issued-refresh", "expires_in": 900}


def _subscription(status: str, is_active: bool, **extra) -> dict:
    return {"id": 7, "price": 49.0, "status": status, "is_active": is_active, **extra}


def _refresher(store, refresh=None, invalidated=None) -> SingleFlightRefresher:
    return SingleFlightRefresher(
        store,
        refresh or AsyncMock(return_value=make_credential("fresh")),
        invalidated or Mock(),
    )


def _executor(http_session, store, refresh=None, invalidated=None) -> AuthenticatedRequestExecutor:
    return AuthenticatedRequestExecutor(http_session, store, _refresher(store, refresh, invalidated))


# ============================================================================
# AuthService
# ============================================================================


@pytest.mark.asyncio
async def test_sign_in_stores_issued_tokens(http_session) -> None:
    store = InMemoryCredentialStore()
    auth = AuthService(_executor(http_session, store), store, VALVES)
    seen: list[dict] = []

    def _callback(url, **kwargs):
        seen.append(kwargs.get("json"))
        return CallbackResult(status=200, payload=TOKENS)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/sign-in", callback=_callback)
        credential = await auth.sign_in("+992900000000", "secret")

    assert seen == [{"phone": "+992900000000", "password": "secret"}]
    assert credential.access_token == "issued-access"
    assert credential.refresh_token == "issued-refresh"
    assert not credential.is_expired()
    assert store.get() is credential


@pytest.mark.asyncio
async def test_sign_in_returns_pending_verification(http_session) -> None:
    store = InMemoryCredentialStore()
    auth = AuthService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/sign-in", payload={"message": "Code sent", "txn_id": "txn-1"})
        result = await auth.sign_in("+992900000000", "secret")

    assert isinstance(result, VerificationResponse)
    assert result.txn_id == "txn-1"
    assert store.get() is None


@pytest.mark.asyncio
async def test_verify_stores_tokens(http_session) -> None:
    store = InMemoryCredentialStore()
    auth = AuthService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/verify", payload=TOKENS)
        credential = await auth.verify("txn-1", "123456")

    assert store.get() is credential
    assert credential.access_token == "issued-access"


@pytest.mark.asyncio
async def test_rejected_sign_in_is_remote_error_without_refresh(http_session) -> None:
    store = InMemoryCredentialStore()
    refresh = AsyncMock()
    auth = AuthService(_executor(http_session, store, refresh=refresh), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/sign-in", status=401, payload={"message": "Invalid phone or password"})
        with pytest.raises(RemoteError) as excinfo:
            await auth.sign_in("+992900000000", "wrong")

    assert str(excinfo.value) == "Invalid phone or password"
    refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_refresh_credential_sends_refresh_token(http_session) -> None:
    store = InMemoryCredentialStore(make_credential("stale", "refresh-1"))
    auth = AuthService(_executor(http_session, store), store, VALVES)
    seen: list[tuple[str, dict]] = []

    def _callback(url, **kwargs):
        seen.append((kwargs["headers"].get("Authorization"), kwargs.get("json")))
        return CallbackResult(status=200, payload=TOKENS)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/refresh-token", callback=_callback)
        credential = await auth.refresh_credential()

    assert seen == [("Bearer stale", {"refresh_token": "refresh-1"})]
    assert credential.access_token == "issued-access"
    # Storing is the refresher's job.
    assert store.get().access_token == "stale"


@pytest.mark.asyncio
async def test_refresh_credential_rejection_is_auth_error(http_session) -> None:
    store = InMemoryCredentialStore(make_credential("stale"))
    refresh = AsyncMock()
    auth = AuthService(_executor(http_session, store, refresh=refresh), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/refresh-token", status=401)
        with pytest.raises(AuthError):
            await auth.refresh_credential()

    refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_refresh_credential_without_tokens_is_auth_error(http_session) -> None:
    store = InMemoryCredentialStore()
    auth = AuthService(_executor(http_session, store), store, VALVES)

    with pytest.raises(AuthError):
        await auth.refresh_credential()


@pytest.mark.asyncio
async def test_refresh_credential_with_malformed_body_is_auth_error(http_session) -> None:
    store = InMemoryCredentialStore(make_credential("stale"))
    auth = AuthService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/refresh-token", payload={"status": "ok"})
        with pytest.raises(AuthError):
            await auth.refresh_credential()


@pytest.mark.asyncio
async def test_sign_out_clears_store_even_when_server_fails(http_session) -> None:
    store = InMemoryCredentialStore(make_credential())
    auth = AuthService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.post(f"{API}/auth/sign-out", status=500)
        await auth.sign_out()

    assert store.get() is None


# ============================================================================
# ChatService
# ============================================================================


def _chat_service(http_session, store, transport_url: str = f"{CHAT_API}/query/stream", valves=VALVES):
    refresher = _refresher(store)
    executor = AuthenticatedRequestExecutor(http_session, store, refresher)
    transport = StreamTransport(http_session, transport_url, refresher)
    return ChatService(executor, transport, store, valves)


@pytest.mark.asyncio
async def test_chat_history_is_parsed(http_session, store) -> None:
    chat = _chat_service(http_session, store)
    history = {
        "count": 1,
        "sessions": [
            {
                "id": "c-1",
                "user_id": 3,
                "title": "Cell biology",
                "message_count": 4,
                "created_at": "2025-01-01T10:00:00Z",
                "updated_at": "2025-01-01T10:05:00Z",
            }
        ],
    }

    with aioresponses() as mocked:
        mocked.get(f"{CHAT_API}/chat/history", payload=history)
        result = await chat.get_chat_history()

    assert result.count == 1
    assert result.sessions[0].title == "Cell biology"


@pytest.mark.asyncio
async def test_chat_messages_use_default_page_size(http_session, store) -> None:
    chat = _chat_service(http_session, store)
    payload = {
        "chat_id": "c-1",
        "count": 1,
        "messages": [{"id": 1, "role": "user", "content": "What is mitosis?", "sequence_num": 1}],
        "pagination": {"has_more": False, "limit": 50, "offset": 0},
        "total_messages": 1,
    }

    with aioresponses() as mocked:
        mocked.get(f"{CHAT_API}/chat/c-1/messages?limit=50&offset=0", payload=payload)
        result = await chat.get_chat_messages("c-1")

    assert result.messages[0].content == "What is mitosis?"
    assert result.pagination.limit == 50


@pytest.mark.asyncio
async def test_chat_history_requires_entitlement(http_session, store) -> None:
    chat = _chat_service(http_session, store)

    with aioresponses() as mocked:
        mocked.get(f"{CHAT_API}/chat/history", status=402, payload={"message": "Subscribe to continue"})
        with pytest.raises(EntitlementError):
            await chat.get_chat_history()


@pytest.mark.asyncio
async def test_ask_assembles_streamed_answer(http_session, stream_backend, store) -> None:
    stream_backend.queue(
        sse_responder(
            b'event: metadata\ndata: {"chat_id":"c-9","sources":2}\n\n',
            b"event: status\ndata: Reading the document\n\n",
            b"event: answer\ndata: Mitosis \n\nevent: answer\ndata: is cell division.\n\n",
            b"event: complete\ndata: \n\n",
        )
    )
    valves = ClientValves(API_BASE_URL=API, CHAT_API_BASE_URL=stream_backend.base_url)
    chat = _chat_service(http_session, store, transport_url=stream_backend.url, valves=valves)

    answer = await chat.ask(StreamQuery(question="What is mitosis?"))

    # Data payloads are stripped, so the two answer parts join without a space.
    assert answer.text == "Mitosisis cell division."
    assert answer.conversation_id == "c-9"
    assert answer.metadata == {"chat_id": "c-9", "sources": 2}
    assert answer.statuses == ["Reading the document"]
    assert answer.completed
    assert not answer.failed


@pytest.mark.asyncio
async def test_ask_flags_error_status(http_session, stream_backend, store) -> None:
    stream_backend.queue(
        sse_responder(b"event: status\ndata: Error: document unreadable\n\n", b"event: complete\ndata: \n\n")
    )
    chat = _chat_service(http_session, store, transport_url=stream_backend.url)

    answer = await chat.ask(StreamQuery(question="Summarize"))

    assert answer.failed
    assert answer.error_status == "Error: document unreadable"


@pytest.mark.asyncio
async def test_ask_raises_stream_error(http_session, stream_backend, store) -> None:
    stream_backend.queue(status_responder(402, {"message": "Trial expired"}))
    chat = _chat_service(http_session, store, transport_url=stream_backend.url)

    with pytest.raises(EntitlementError):
        await chat.ask(StreamQuery(question="What is mitosis?"))


# ============================================================================
# SubscriptionService
# ============================================================================


@pytest.mark.asyncio
async def test_reissued_subscription_tokens_replace_stored_credential(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(
            f"{API}/user/subscription/current?with_token=true",
            payload=_subscription("active", True, **TOKENS),
        )
        subscription = await subscriptions.get_current_subscription(with_token=True)

    assert subscription.is_active_subscription
    assert store.get().access_token == "issued-access"
    assert store.get().refresh_token == "issued-refresh"


@pytest.mark.asyncio
async def test_subscription_without_tokens_keeps_stored_credential(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(f"{API}/user/subscription/current?with_token=true", payload=_subscription("active", True))
        await subscriptions.get_current_subscription(with_token=True)

    assert store.get().access_token == "access-1"


@pytest.mark.asyncio
async def test_check_subscription_refetches_tokens_when_active(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, payload=_subscription("active", True))
        mocked.get(
            f"{API}/user/subscription/current?with_token=true",
            payload=_subscription("active", True, **TOKENS),
        )
        subscription = await subscriptions.check_subscription()

    assert subscription is not None
    assert subscription.is_active_subscription
    assert store.get().access_token == "issued-access"


@pytest.mark.asyncio
async def test_check_subscription_inactive_keeps_tokens(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, payload=_subscription("expired", False))
        assert await subscriptions.check_subscription() is None

    assert store.get().access_token == "access-1"


@pytest.mark.asyncio
async def test_check_subscription_not_found_means_none(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, status=404)
        assert await subscriptions.check_subscription() is None

    assert store.get().access_token == "access-1"


@pytest.mark.asyncio
async def test_poll_returns_active_subscription(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, payload=_subscription("pending", False))
        mocked.get(SUBSCRIPTION_URL, status=404)
        mocked.get(SUBSCRIPTION_URL, payload=_subscription("active", True))
        result = await subscriptions.poll_subscription_status(max_attempts=5, interval_seconds=0)

    assert result.status == "active"
    assert result.subscription is not None
    assert result.subscription.id == 7


@pytest.mark.asyncio
async def test_poll_times_out(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, payload=_subscription("pending", False), repeat=True)
        result = await subscriptions.poll_subscription_status(max_attempts=3, interval_seconds=0)

    assert result.status == "timeout"
    assert result.subscription is None


@pytest.mark.asyncio
async def test_poll_times_out_while_not_found(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, status=404, repeat=True)
        result = await subscriptions.poll_subscription_status(max_attempts=2, interval_seconds=0)

    assert result.status == "timeout"


@pytest.mark.asyncio
async def test_poll_raises_other_errors_immediately(http_session, store) -> None:
    subscriptions = SubscriptionService(_executor(http_session, store), store, VALVES)

    with aioresponses() as mocked:
        mocked.get(SUBSCRIPTION_URL, status=500, payload={"message": "database down"})
        with pytest.raises(RemoteError) as excinfo:
            await subscriptions.poll_subscription_status(max_attempts=5, interval_seconds=0)

    assert excinfo.value.status == 500
