# tests/test_credential_store.py
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import select

from booklink.core.errors import AuthorizationExpiredError, CredentialRefreshError
from booklink.db.session import AsyncSessionLocal
from booklink.models.calendar_connection import CalendarConnection
from booklink.services.credential_store import DatabaseCredentialStore, OAuthClientConfig

TOKEN_URL = "https://oauth.test/token"


class _FakeResponse:
    def __init__(self, status_code: int, json_data: Dict[str, Any]):
        self.status_code = status_code
        self._json_data = json_data
        self.text = str(json_data)

    def json(self) -> Dict[str, Any]:
        return self._json_data


class _FakeTokenClient:
    posts: List[Dict[str, Any]] = []
    response: Optional[_FakeResponse] = None

    def __init__(self, timeout: float | None = None):
        self._timeout = timeout

    async def __aenter__(self) -> "_FakeTokenClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, data: Optional[Dict[str, Any]] = None, **kwargs) -> _FakeResponse:
        _FakeTokenClient.posts.append({"url": url, "data": data})
        return _FakeTokenClient.response


@pytest.fixture
def token_endpoint(monkeypatch):
    _FakeTokenClient.posts = []
    _FakeTokenClient.response = _FakeResponse(
        HTTPStatus.OK,
        {"access_token": "fresh-token", "expires_in": 3600, "refresh_token": "rotated-refresh"},
    )
    monkeypatch.setattr(httpx, "AsyncClient", _FakeTokenClient)
    return _FakeTokenClient


def _store(configured: bool = True) -> DatabaseCredentialStore:
    client = OAuthClientConfig(TOKEN_URL, "client-id" if configured else None, "secret" if configured else None)
    return DatabaseCredentialStore(
        AsyncSessionLocal,
        oauth_clients={"google": client, "microsoft": client},
        timeout_seconds=5,
        refresh_skew_seconds=300,
    )


async def _stored(connection_id: int) -> CalendarConnection:
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(CalendarConnection).where(CalendarConnection.id == connection_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_refresh(make_connection, token_endpoint):
    connection = make_connection(token_expires_at=datetime.now(tz=timezone.utc) + timedelta(hours=1))

    token = await _store().get_valid_token(connection)

    assert token == "access-host-1"
    assert token_endpoint.posts == []


@pytest.mark.asyncio
async def test_token_close_to_expiry_is_refreshed_and_persisted(make_connection, token_endpoint):
    connection = make_connection(token_expires_at=datetime.now(tz=timezone.utc) + timedelta(minutes=2))

    token = await _store().get_valid_token(connection)

    assert token == "fresh-token"
    assert token_endpoint.posts[0]["url"] == TOKEN_URL
    assert token_endpoint.posts[0]["data"]["grant_type"] == "refresh_token"
    assert token_endpoint.posts[0]["data"]["refresh_token"] == "refresh-host-1"

    stored = await _stored(connection.id)
    assert stored.access_token == "fresh-token"
    assert stored.refresh_token == "rotated-refresh"
    assert stored.token_expires_at > datetime.now(tz=timezone.utc) + timedelta(minutes=50)
    assert connection.access_token == "fresh-token"


@pytest.mark.asyncio
async def test_expired_without_refresh_token_is_authorization_expired(make_connection, token_endpoint):
    connection = make_connection(
        refresh_token=None,
        token_expires_at=datetime.now(tz=timezone.utc) - timedelta(minutes=1),
    )

    with pytest.raises(AuthorizationExpiredError):
        await _store().get_valid_token(connection)


@pytest.mark.asyncio
async def test_rejected_refresh_raises(make_connection, token_endpoint):
    token_endpoint.response = _FakeResponse(HTTPStatus.BAD_REQUEST, {"error": "invalid_grant"})
    connection = make_connection()

    with pytest.raises(CredentialRefreshError):
        await _store().refresh(connection)

    stored = await _stored(connection.id)
    assert stored.access_token == "access-host-1"


@pytest.mark.asyncio
async def test_failed_proactive_refresh_keeps_still_valid_token(make_connection, token_endpoint):
    token_endpoint.response = _FakeResponse(HTTPStatus.BAD_REQUEST, {"error": "invalid_grant"})
    connection = make_connection(token_expires_at=datetime.now(tz=timezone.utc) + timedelta(minutes=2))

    assert await _store().get_valid_token(connection) == "access-host-1"


@pytest.mark.asyncio
async def test_unconfigured_oauth_client_cannot_refresh(make_connection, token_endpoint):
    connection = make_connection()

    with pytest.raises(CredentialRefreshError):
        await _store(configured=False).refresh(connection)
    assert token_endpoint.posts == []


@pytest.mark.asyncio
async def test_token_response_without_expiry_is_rejected(make_connection, token_endpoint):
    token_endpoint.response = _FakeResponse(HTTPStatus.OK, {"access_token": "x"})
    connection = make_connection()

    with pytest.raises(CredentialRefreshError):
        await _store().refresh(connection)


@pytest.mark.asyncio
async def test_non_json_token_response_is_a_refresh_error(make_connection, token_endpoint):
    class _HtmlResponse(_FakeResponse):
        def json(self):
            raise ValueError("Expecting value")

    token_endpoint.response = _HtmlResponse(HTTPStatus.OK, {})
    connection = make_connection()

    with pytest.raises(CredentialRefreshError):
        await _store().refresh(connection)

    stored = await _stored(connection.id)
    assert stored.access_token == "access-host-1"
