import asyncio
import copy
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from auth import AuthenticationError, InvestecAuth, NotAuthenticatedError, TokenCache
from config import get_settings
from database import Base
from schemas import CredentialsIn
from secure_storage import SecureStorage


START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _settings():
    settings = copy.copy(get_settings())
    settings.secret_key = "test-secret"
    settings.investec_base_url = "https://bank.test"
    settings.token_expiry_buffer_secs = 300
    return settings


def _auth(handler, clock: Clock):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    settings = _settings()
    storage = SecureStorage(sessionmaker(bind=engine), settings)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InvestecAuth(storage, client, settings, clock=clock), storage


def _credentials() -> CredentialsIn:
    return CredentialsIn(clientId="cid", clientSecret="csecret", apiKey="xkey")


def test_token_cache_respects_expiry_buffer() -> None:
    cache = TokenCache(buffer_secs=300)
    cache.put("tok", START + timedelta(seconds=600))

    assert cache.get(START + timedelta(seconds=290)) == "tok"
    assert cache.get(START + timedelta(seconds=300)) is None
    assert not cache.is_valid(START + timedelta(seconds=301))


def test_token_issued_for_600s_is_refreshed_after_301s() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(
            200, json={"access_token": f"tok-{len(calls)}", "expires_in": 600}
        )

    clock = Clock(START)
    auth, _ = _auth(handler, clock)

    async def scenario():
        await auth.login(_credentials())
        clock.now = START + timedelta(seconds=290)
        early = await auth.get_access_token()
        clock.now = START + timedelta(seconds=301)
        late = await auth.get_access_token()
        return early, late

    early, late = asyncio.run(scenario())

    assert early == "tok-1"
    assert late == "tok-2"
    assert len(calls) == 2


def test_token_request_shape() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["api_key"] = request.headers["x-api-key"]
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "tok", "expires_in": "1799"})

    auth, storage = _auth(handler, Clock(START))
    asyncio.run(auth.login(_credentials()))

    assert seen["url"] == "https://bank.test/identity/v2/oauth2/token"
    assert seen["auth"].startswith("Basic ")
    assert seen["api_key"] == "xkey"
    assert seen["body"] == "grant_type=client_credentials"
    token, expires_at = storage.get_access_token()
    assert token == "tok"
    assert expires_at == START + timedelta(seconds=1799)


def test_persisted_token_is_reused_by_new_instance() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 1800})

    clock = Clock(START)
    auth, storage = _auth(handler, clock)
    asyncio.run(auth.login(_credentials()))

    fresh = InvestecAuth(storage, auth.client, auth.settings, clock=clock)
    assert asyncio.run(fresh.get_access_token()) == "tok"
    assert len(calls) == 1


def test_no_credentials_raises_not_authenticated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    auth, _ = _auth(handler, Clock(START))

    with pytest.raises(NotAuthenticatedError, match="Please login first"):
        asyncio.run(auth.get_access_token())


def test_failed_login_stores_nothing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid client credentials"})

    auth, storage = _auth(handler, Clock(START))

    with pytest.raises(AuthenticationError, match="Invalid client credentials"):
        asyncio.run(auth.login(_credentials()))
    assert not storage.is_authenticated()


def test_logout_clears_cache_and_storage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 1800})

    auth, storage = _auth(handler, Clock(START))
    asyncio.run(auth.login(_credentials()))

    auth.logout()

    assert not auth.is_authenticated()
    assert auth.cache.token is None
    assert storage.get_access_token() is None
    with pytest.raises(NotAuthenticatedError):
        asyncio.run(auth.get_access_token())
