# booklink/services/calendar_provider.py
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx

from booklink.core.config import get_settings
from booklink.core.errors import (
    AuthorizationExpiredError,
    CredentialRefreshError,
    ProviderError,
    ProviderTimeoutError,
    UnsupportedProviderError,
)
from booklink.models.calendar_connection import CalendarConnection
from booklink.schemas.availability import BusyInterval
from booklink.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderAuthError(ProviderError):
    """
    The vendor rejected the access token (HTTP 401).

    Internal to the adapters: callers only ever see AuthorizationExpiredError
    once the refresh-and-retry round has been spent.
    """


@dataclass
class CalendarEventDraft:
    """
    A booked meeting as written to a participant's native calendar.
    """

    summary: str
    description: str
    start: datetime
    end: datetime
    timezone_name: str
    resource_emails: List[str] = field(default_factory=list)


class CalendarProvider(abc.ABC):
    """
    One implementation per calendar vendor, selected by CalendarConnection.provider.

    Responsibilities
    ----------------
    - Query the vendor for busy time over a window.
    - Create and delete the events written for booked meetings.
    - On a rejected token: refresh through the Credential Store exactly once,
      retry exactly once, then give up with AuthorizationExpiredError.
    - Convert every transport failure into a CalendarProviderError so no raw
      httpx exception crosses into availability computation.
    """

    PROVIDER_NAME: str = ""

    def __init__(
        self,
        credential_store: CredentialStore,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._credentials = credential_store
        self._timeout_seconds = timeout_seconds or get_settings().PROVIDER_TIMEOUT_SECONDS

    async def fetch_busy(
        self,
        connection: CalendarConnection,
        calendar_ids: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        """
        Busy intervals across `calendar_ids` of the connection's owner.
        """
        return await self._with_token_refresh(
            connection,
            lambda token: self._query_busy(token, list(calendar_ids), window_start, window_end),
        )

    async def fetch_resource_busy(
        self,
        connection: CalendarConnection,
        resource_ids: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        """
        Busy intervals of shared resources (rooms) visible to the connection.
        """
        return await self._with_token_refresh(
            connection,
            lambda token: self._query_resource_busy(token, list(resource_ids), window_start, window_end),
        )

    async def create_event(
        self,
        connection: CalendarConnection,
        calendar_id: str,
        draft: CalendarEventDraft,
    ) -> str:
        """
        Insert `draft` into one of the connection's calendars; returns the vendor event id.
        """
        return await self._with_token_refresh(
            connection,
            lambda token: self._insert_event(token, calendar_id, draft),
        )

    async def delete_event(
        self,
        connection: CalendarConnection,
        calendar_id: str,
        event_id: str,
    ) -> None:
        await self._with_token_refresh(
            connection,
            lambda token: self._remove_event(token, calendar_id, event_id),
        )

    @abc.abstractmethod
    async def _query_busy(
        self,
        access_token: str,
        calendar_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        ...

    async def _query_resource_busy(
        self,
        access_token: str,
        resource_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        return await self._query_busy(access_token, resource_ids, window_start, window_end)

    @abc.abstractmethod
    async def _insert_event(
        self,
        access_token: str,
        calendar_id: str,
        draft: CalendarEventDraft,
    ) -> str:
        ...

    @abc.abstractmethod
    async def _remove_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
    ) -> None:
        ...

    async def _with_token_refresh(
        self,
        connection: CalendarConnection,
        query: Callable[[str], Awaitable[T]],
    ) -> T:
        token = await self._credentials.get_valid_token(connection)
        try:
            return await self._run_query(query, token)
        except ProviderAuthError:
            logger.info(
                "%s rejected token for connection %s, refreshing and retrying once",
                self.PROVIDER_NAME,
                connection.id,
            )

        try:
            token = await self._credentials.refresh(connection)
        except CredentialRefreshError as exc:
            raise AuthorizationExpiredError(
                f"{self.PROVIDER_NAME} authorization expired for connection {connection.id}: {exc}"
            ) from exc

        try:
            return await self._run_query(query, token)
        except ProviderAuthError as exc:
            raise AuthorizationExpiredError(
                f"{self.PROVIDER_NAME} rejected the refreshed token for connection {connection.id}"
            ) from exc

    async def _run_query(
        self,
        query: Callable[[str], Awaitable[T]],
        token: str,
    ) -> T:
        # Payload parsing (timestamps, missing keys, interval validation) must
        # surface as ProviderError like any other vendor failure.
        try:
            return await query(token)
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError(f"{self.PROVIDER_NAME} returned an unreadable payload: {exc}") from exc

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Issue an authenticated request.

        Raises ProviderAuthError on 401, ProviderTimeoutError on timeouts and
        ProviderError on transport failures. Other statuses are left to the caller.
        """
        request_headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.request(
                    method=method.upper(),
                    url=url,
                    headers=request_headers,
                    params=params,
                    json=json,
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.PROVIDER_NAME} request timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.PROVIDER_NAME} request failed: {exc}") from exc

        if resp.status_code == 401:
            raise ProviderAuthError(f"{self.PROVIDER_NAME} returned 401 for {url}")
        return resp

    async def _request_json(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue an authenticated request and return the JSON payload; any
        non-2xx answer is a ProviderError.
        """
        resp = await self._send(method, url, access_token, params=params, json=json, headers=headers)
        if resp.status_code // 100 != 2:
            raise ProviderError(
                f"{self.PROVIDER_NAME} {method.upper()} failed (status={resp.status_code}): {resp.text}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.PROVIDER_NAME} returned a non-JSON body for {url}") from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.PROVIDER_NAME} returned an unexpected payload for {url}")
        return payload

    async def _delete(self, url: str, access_token: str) -> None:
        # An event that is already gone counts as deleted.
        resp = await self._send("DELETE", url, access_token)
        if resp.status_code in (404, 410):
            logger.info("%s event already removed: %s", self.PROVIDER_NAME, url)
            return
        if resp.status_code // 100 != 2:
            raise ProviderError(
                f"{self.PROVIDER_NAME} DELETE failed (status={resp.status_code}): {resp.text}"
            )


def parse_provider_datetime(value: str, assume_utc: bool = True) -> datetime:
    """
    Parse a vendor timestamp into an aware UTC datetime.

    Microsoft returns naive strings with seven fractional digits when asked for
    UTC; Google returns RFC 3339 with an offset or a trailing 'Z'.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if char.isdigit():
                digits += char
            else:
                rest = tail[index:]
                break
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        if not assume_utc:
            raise ValueError(f"Timestamp without offset: {value!r}")
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_rfc3339(instant: datetime) -> str:
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_calendar_provider(provider: str, credential_store: CredentialStore) -> CalendarProvider:
    """
    Pick the adapter for a connection's provider tag.
    """
    # Local imports keep the vendor modules free to import this base module.
    from booklink.services.google_calendar import GoogleCalendarProvider
    from booklink.services.microsoft_calendar import MicrosoftCalendarProvider

    registry = {
        GoogleCalendarProvider.PROVIDER_NAME: GoogleCalendarProvider,
        MicrosoftCalendarProvider.PROVIDER_NAME: MicrosoftCalendarProvider,
    }
    provider_cls = registry.get((provider or "").lower())
    if provider_cls is None:
        raise UnsupportedProviderError(f"No calendar adapter for provider {provider!r}")
    return provider_cls(credential_store)
