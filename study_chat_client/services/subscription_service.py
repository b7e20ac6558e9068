"""Subscription status lookups and the post-payment status poller."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from ..auth.credentials import Credential, CredentialStore
from ..core.config import ClientValves
from ..core.errors import RemoteError
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed
from ..models.api_models import Subscription
from ..requests.executor import AuthenticatedRequestExecutor, RequestSpec

NOT_FOUND_STATUS = 404


@dataclass(frozen=True, slots=True)
class SubscriptionPollResult:
    status: Literal["active", "timeout"]
    subscription: Optional[Subscription] = None


def _still_pending(subscription: Optional[Subscription]) -> bool:
    return subscription is None or not subscription.is_active_subscription


def _not_created_yet(exc: BaseException) -> bool:
    # The backend answers 404 until the submitted subscription is recorded.
    return isinstance(exc, RemoteError) and exc.status == NOT_FOUND_STATUS


class SubscriptionService:
    def __init__(
        self,
        executor: AuthenticatedRequestExecutor,
        store: CredentialStore,
        valves: ClientValves,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._executor = executor
        self._store = store
        self.valves = valves
        self.logger = logger or SessionLogger.get_logger(__name__)

    @timed
    async def get_current_subscription(self, *, with_token: bool = False) -> Subscription:
        """Fetch the current subscription.

        With ``with_token`` the backend re-issues the access/refresh pair so the
        new token carries the subscription claims; that pair replaces the
        stored credential.
        """
        payload = await self._executor.execute(
            RequestSpec(
                "GET",
                self.valves.api_url("/user/subscription/current"),
                params={"with_token": with_token},
            )
        )
        subscription = Subscription.model_validate(payload)
        if with_token:
            self.apply_subscription_tokens(subscription)
        return subscription

    def apply_subscription_tokens(self, subscription: Subscription) -> Optional[Credential]:
        """Store tokens re-issued with ``subscription``; returns None when it carries none."""
        tokens = subscription.token_response()
        if tokens is None:
            return None
        credential = Credential.from_token_response(tokens.model_dump())
        self._store.set(credential)
        self.logger.info("Stored tokens re-issued with subscription %s", subscription.id)
        return credential

    @timed
    async def check_subscription(self) -> Optional[Subscription]:
        """Return the active subscription, or None when the user has none.

        An active subscription is fetched a second time with tokens so the
        stored credential picks up the subscription claims. A 404 means the
        user never subscribed.
        """
        try:
            subscription = await self.get_current_subscription()
        except RemoteError as exc:
            if _not_created_yet(exc):
                self.logger.debug("No subscription on record")
                return None
            raise
        if not subscription.is_active_subscription:
            self.logger.debug("Subscription %s is %s", subscription.id, subscription.status)
            return None
        return await self.get_current_subscription(with_token=True)

    @timed
    async def poll_subscription_status(
        self,
        *,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ) -> SubscriptionPollResult:
        """Check the subscription until it turns active or attempts run out.

        404 responses count as "still pending". Any other error is raised
        immediately without further attempts.
        """
        attempts = max_attempts if max_attempts is not None else self.valves.SUBSCRIPTION_POLL_MAX_ATTEMPTS
        interval = (
            interval_seconds if interval_seconds is not None else self.valves.SUBSCRIPTION_POLL_INTERVAL_SECONDS
        )

        def _log_attempt(retry_state: RetryCallState) -> None:
            self.logger.debug("Subscription still pending (attempt %d/%d)", retry_state.attempt_number, attempts)

        def _give_up(retry_state: RetryCallState) -> None:
            self.logger.info("Subscription did not become active after %d attempts", retry_state.attempt_number)
            return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, attempts)),
            wait=wait_fixed(interval),
            retry=retry_if_result(_still_pending) | retry_if_exception(_not_created_yet),
            before_sleep=_log_attempt,
            retry_error_callback=_give_up,
        )
        subscription = await retrying(self.get_current_subscription)
        if _still_pending(subscription):
            return SubscriptionPollResult(status="timeout")
        return SubscriptionPollResult(status="active", subscription=subscription)


__all__ = ["SubscriptionService", "SubscriptionPollResult"]
