# booklink/services/credential_store.py
from __future__ import annotations

import abc
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booklink.core.config import Settings, get_settings
from booklink.core.errors import AuthorizationExpiredError, CredentialRefreshError
from booklink.models.calendar_connection import CalendarConnection

logger = logging.getLogger(__name__)


class CredentialStore(abc.ABC):
    """
    Capability injected into calendar provider adapters for access tokens.

    Adapters never read or write CalendarConnection rows themselves; they ask
    the store for a usable token and ask it to refresh after a 401.
    """

    @abc.abstractmethod
    async def get_valid_token(self, connection: CalendarConnection) -> str:
        """
        Return an access token believed to be valid for `connection`.
        """

    @abc.abstractmethod
    async def refresh(self, connection: CalendarConnection) -> str:
        """
        Obtain a new access token, persist it, and return it.

        Raises CredentialRefreshError when no new token can be obtained.
        """


class OAuthClientConfig:
    def __init__(self, token_url: str, client_id: Optional[str], client_secret: Optional[str]):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


def oauth_clients_from_settings(settings: Settings) -> Dict[str, OAuthClientConfig]:
    return {
        "google": OAuthClientConfig(
            settings.GOOGLE_TOKEN_URL,
            settings.GOOGLE_CLIENT_ID,
            settings.GOOGLE_CLIENT_SECRET,
        ),
        "microsoft": OAuthClientConfig(
            settings.MICROSOFT_TOKEN_URL,
            settings.MICROSOFT_CLIENT_ID,
            settings.MICROSOFT_CLIENT_SECRET,
        ),
    }


class DatabaseCredentialStore(CredentialStore):
    """
    Credential store backed by the calendar_connections table.

    Responsibilities
    ----------------
    - Hand out the stored access token, refreshing proactively when it is
      about to expire.
    - Exchange the refresh token with the provider's OAuth token endpoint.
    - Persist the new token in its own short transaction *before* returning,
      so a concurrent caller reading the row benefits immediately.

    Notes
    -----
    - Refresh writes are last-writer-wins: two racing refreshes both produce
      valid tokens and one of them simply overwrites the other.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oauth_clients: Optional[Dict[str, OAuthClientConfig]] = None,
        timeout_seconds: Optional[float] = None,
        refresh_skew_seconds: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._oauth_clients = oauth_clients or oauth_clients_from_settings(settings)
        self._timeout_seconds = timeout_seconds or settings.PROVIDER_TIMEOUT_SECONDS
        skew = settings.TOKEN_REFRESH_SKEW_SECONDS if refresh_skew_seconds is None else refresh_skew_seconds
        self._refresh_skew = timedelta(seconds=skew)

    async def get_valid_token(self, connection: CalendarConnection) -> str:
        expires_at = connection.token_expires_at
        now = datetime.now(tz=timezone.utc)

        if expires_at is None or expires_at - self._refresh_skew > now:
            return connection.access_token

        if not connection.refresh_token:
            if expires_at > now:
                return connection.access_token
            raise AuthorizationExpiredError(
                f"Token expired for connection {connection.id} and no refresh token is stored"
            )

        logger.info(
            "Access token for connection %s expires at %s, refreshing proactively",
            connection.id,
            expires_at.isoformat(),
        )
        try:
            return await self.refresh(connection)
        except CredentialRefreshError as exc:
            if expires_at > now:
                # Still inside its lifetime; let the provider call decide.
                logger.warning("Proactive refresh failed for connection %s: %s", connection.id, exc)
                return connection.access_token
            raise AuthorizationExpiredError(str(exc)) from exc

    async def refresh(self, connection: CalendarConnection) -> str:
        client = self._oauth_clients.get(connection.provider)
        if client is None:
            raise CredentialRefreshError(f"No OAuth client for provider {connection.provider!r}")
        if not client.configured:
            raise CredentialRefreshError(f"OAuth client for {connection.provider} is not configured")
        if not connection.refresh_token:
            raise CredentialRefreshError(f"Connection {connection.id} has no refresh token")

        data = {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "refresh_token": connection.refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as http:
                resp = await http.post(client.token_url, data=data)
        except httpx.HTTPError as exc:
            raise CredentialRefreshError(
                f"Token refresh request failed for connection {connection.id}: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise CredentialRefreshError(
                f"Token refresh failed for connection {connection.id} "
                f"(status={resp.status_code}): {resp.text}"
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise CredentialRefreshError(
                f"Token endpoint returned a non-JSON body for connection {connection.id}"
            ) from exc
        if not isinstance(payload, dict):
            raise CredentialRefreshError("Invalid token response (not a JSON object)")
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not access_token or not isinstance(expires_in, (int, float)):
            raise CredentialRefreshError(
                "Invalid token response (missing access_token/expires_in)"
            )

        expires_at = datetime.now(tz=timezone.utc) + timedelta(seconds=float(expires_in))
        values = {
            "access_token": access_token,
            "token_expires_at": expires_at,
            "updated_at": datetime.now(tz=timezone.utc),
        }
        # Providers may rotate the refresh token.
        if payload.get("refresh_token"):
            values["refresh_token"] = payload["refresh_token"]

        async with self._session_factory() as session:
            await session.execute(
                update(CalendarConnection)
                .where(CalendarConnection.id == connection.id)
                .values(**values)
            )
            await session.commit()

        connection.access_token = access_token
        connection.token_expires_at = expires_at
        if "refresh_token" in values:
            connection.refresh_token = values["refresh_token"]

        logger.info("Refreshed %s access token for connection %s", connection.provider, connection.id)
        return access_token
