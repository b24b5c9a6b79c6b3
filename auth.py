from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from config import Settings, get_settings
from schemas import CredentialsIn, TokenResponse
from secure_storage import SecureStorage


logger = logging.getLogger(__name__)

TOKEN_PATH = "/identity/v2/oauth2/token"


class NotAuthenticatedError(RuntimeError):
    pass


class AuthenticationError(RuntimeError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_http_error(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            payload = exc.response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return f"HTTP {exc.response.status_code}"
    return str(exc) or exc.__class__.__name__


@dataclass
class TokenCache:
    """Bearer token with an absolute expiry.

    A token is usable on ``[issued, expires_at - buffer)``.
    """

    buffer_secs: int = 300
    token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def put(self, token: str, expires_at: datetime) -> None:
        self.token = token
        self.expires_at = expires_at

    def clear(self) -> None:
        self.token = None
        self.expires_at = None

    def is_valid(self, now: datetime) -> bool:
        if not self.token or self.expires_at is None:
            return False
        return now < self.expires_at - timedelta(seconds=self.buffer_secs)

    def get(self, now: datetime) -> Optional[str]:
        return self.token if self.is_valid(now) else None


class InvestecAuth:
    def __init__(
        self,
        storage: SecureStorage,
        client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.client = client
        self.settings = settings or get_settings()
        self.clock = clock
        self.cache = TokenCache(buffer_secs=self.settings.token_expiry_buffer_secs)

    @property
    def token_url(self) -> str:
        return self.settings.investec_base_url.rstrip("/") + TOKEN_PATH

    async def login(self, credentials: CredentialsIn) -> None:
        token = await self._fetch_access_token(credentials)
        self.storage.save_credentials(credentials)
        self._remember(token)
        logger.info("auth_login: credentials stored")

    def logout(self) -> None:
        self.storage.delete_credentials()
        self.cache.clear()
        logger.info("auth_logout: credentials cleared")

    def is_authenticated(self) -> bool:
        return self.storage.is_authenticated()

    async def get_access_token(self) -> str:
        now = self.clock()
        cached = self.cache.get(now)
        if cached:
            return cached

        stored = self.storage.get_access_token()
        if stored:
            self.cache.put(*stored)
            cached = self.cache.get(now)
            if cached:
                return cached

        credentials = self.storage.get_credentials()
        if credentials is None:
            raise NotAuthenticatedError("No credentials stored. Please login first.")

        logger.info("auth_refresh: cached token missing or expiring")
        token = await self._fetch_access_token(credentials)
        self._remember(token)
        return token.access_token

    def _remember(self, token: TokenResponse) -> None:
        expires_at = self.clock() + timedelta(seconds=token.expires_in_secs)
        self.cache.put(token.access_token, expires_at)
        self.storage.save_access_token(token.access_token, expires_at)

    async def _fetch_access_token(self, credentials: CredentialsIn) -> TokenResponse:
        try:
            response = await self.client.post(
                self.token_url,
                data={"grant_type": "client_credentials"},
                auth=httpx.BasicAuth(credentials.client_id, credentials.client_secret),
                headers={"x-api-key": credentials.api_key, "Accept": "application/json"},
            )
            response.raise_for_status()
            return TokenResponse.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise AuthenticationError(
                f"Authentication failed: {describe_http_error(exc)}"
            ) from exc
        except ValueError as exc:
            raise AuthenticationError("Authentication failed: unexpected token response") from exc
