"""Sign-in, verification, refresh and sign-out calls.

``AuthService.refresh_credential`` is the refresh collaborator handed to the
:class:`~study_chat_client.auth.refresh.SingleFlightRefresher`; it must never
go through the retrying path itself, otherwise a rejected refresh would try
to refresh again.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic import ValidationError

from ..auth.credentials import Credential, CredentialStore
from ..core.config import ClientValves
from ..core.errors import AuthError, StudyChatError
from ..core.logging_system import SessionLogger
from ..core.timing_logger import timed
from ..models.api_models import (
    SignInRequest,
    TokenResponse,
    VerificationResponse,
    VerifyRequest,
)
from ..requests.executor import AuthenticatedRequestExecutor, RequestSpec


class AuthService:
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
    async def sign_in(self, phone: str, password: str) -> Union[Credential, VerificationResponse]:
        """Sign in; returns the stored credential or a pending verification."""
        payload = await self._executor.execute(
            RequestSpec(
                "POST",
                self.valves.api_url("/auth/sign-in"),
                json_body=SignInRequest(phone=phone, password=password).model_dump(),
                authenticated=False,
            )
        )
        if isinstance(payload, dict) and "access_token" in payload:
            return self._store_tokens(TokenResponse.model_validate(payload))
        return VerificationResponse.model_validate(payload)

    @timed
    async def verify(self, txn_id: str, verify_code: str) -> Credential:
        payload = await self._executor.execute(
            RequestSpec(
                "POST",
                self.valves.api_url("/auth/verify"),
                json_body=VerifyRequest(txn_id=txn_id, verify_code=verify_code).model_dump(),
                authenticated=False,
            )
        )
        return self._store_tokens(TokenResponse.model_validate(payload))

    @timed
    async def refresh_credential(self) -> Credential:
        """Exchange the stored refresh token for a new credential.

        Raises:
            AuthError: no stored credential, or the backend refused the refresh.
        """
        current = self._store.get()
        if current is None or not current.refresh_token:
            raise AuthError("No tokens available for refresh")
        try:
            payload = await self._executor.execute(
                RequestSpec(
                    "POST",
                    self.valves.api_url("/auth/refresh-token"),
                    json_body={"refresh_token": current.refresh_token},
                    headers=current.authorization_header(),
                    authenticated=False,
                )
            )
            tokens = TokenResponse.model_validate(payload)
        except ValidationError as exc:
            raise AuthError("Refresh response did not contain tokens") from exc
        except StudyChatError as exc:
            raise AuthError(f"Authentication failed - unable to refresh token: {exc}") from exc
        return Credential.from_token_response(tokens.model_dump())

    @timed
    async def sign_out(self) -> None:
        """Best-effort server sign-out followed by clearing the local credential."""
        current = self._store.get()
        try:
            if current is not None:
                await self._executor.execute(
                    RequestSpec(
                        "POST",
                        self.valves.api_url("/auth/sign-out"),
                        headers=current.authorization_header(),
                        authenticated=False,
                    )
                )
        except StudyChatError as exc:
            self.logger.warning("Error during API logout: %s", exc)
        finally:
            self._store.clear()

    def _store_tokens(self, tokens: TokenResponse) -> Credential:
        credential = Credential.from_token_response(tokens.model_dump())
        self._store.set(credential)
        return credential


__all__ = ["AuthService"]
