# tests/conftest.py
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Must run before anything imports booklink: settings and the engine are
# created at import time.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "booklink_test.db")
os.environ["APP_ENV"] = "test"
os.environ["DB_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ.pop("INTERNAL_API_KEY", None)
os.environ.pop("DOWNSTREAM_EVENTS_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from booklink.core.config import get_settings
from booklink.db.session import build_sync_db_url, reset_schema_sync
from booklink.main import create_app
from booklink.models.booking_request import BookingRequest
from booklink.models.calendar_connection import CalendarConnection
from booklink.models.meeting import Meeting
from booklink.models.room import Room
from booklink.services.downstream_recorder import DownstreamRecorder, RecorderOutcome


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for all tests.

    Uses the application factory so dependency overrides can be applied per
    test through `client.app.dependency_overrides`.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True, scope="function")
def _reset_db():
    """
    Every test gets a clean schema and empty tables.
    """
    reset_schema_sync()
    yield


@pytest.fixture(autouse=True)
def _clear_overrides(client):
    yield
    client.app.dependency_overrides.clear()


@pytest.fixture
def db_add():
    """
    Insert ORM objects through a synchronous session and return them.

    Works from both sync (TestClient) and async tests since it never touches
    the event loop.
    """
    engine = create_engine(build_sync_db_url(get_settings().DB_URL), future=True)
    SyncSession = sessionmaker(bind=engine, expire_on_commit=False)

    def _add(*objects):
        with SyncSession() as session:
            session.add_all(objects)
            session.commit()
        return objects if len(objects) > 1 else objects[0]

    yield _add
    engine.dispose()


@pytest.fixture
def make_booking(db_add):
    """
    Factory for a meeting plus its booking link.
    """

    def _make(
        token: str = "link-token-0001",
        *,
        duration_minutes: int = 60,
        participant_ids=("host-1",),
        meeting_timezone: str = "America/New_York",
        location_mode: str = "Remote",
        room: Room | None = None,
        request_status: str = "Open",
        meeting_status: str = "Proposed",
        expires_at: datetime | None = None,
        start_time: datetime | None = None,
        preferences: dict | None = None,
        search_window_days: int = 14,
        external_event_ref: str | None = None,
    ):
        meeting = Meeting(
            meeting_type_name="Initial Consultation",
            duration_minutes=duration_minutes,
            location_mode=location_mode,
            participant_ids=list(participant_ids),
            room_id=room.id if room is not None else None,
            timezone=meeting_timezone,
            status=meeting_status,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=duration_minutes) if start_time else None,
            search_window_days=search_window_days,
            preferences=preferences,
            external_event_ref=external_event_ref,
        )
        db_add(meeting)
        request = BookingRequest(
            token=token,
            meeting_id=meeting.id,
            status=request_status,
            expires_at=expires_at or datetime.now(tz=timezone.utc) + timedelta(days=7),
        )
        db_add(request)
        return meeting, request

    return _make


@pytest.fixture
def make_connection(db_add):
    def _make(user_id: str = "host-1", provider: str = "google", **kwargs):
        connection = CalendarConnection(
            user_id=user_id,
            provider=provider,
            access_token=kwargs.pop("access_token", f"access-{user_id}"),
            refresh_token=kwargs.pop("refresh_token", f"refresh-{user_id}"),
            token_expires_at=kwargs.pop(
                "token_expires_at", datetime.now(tz=timezone.utc) + timedelta(hours=1)
            ),
            **kwargs,
        )
        return db_add(connection)

    return _make


class FakeRecorder(DownstreamRecorder):
    """
    Downstream recorder double: remembers calls and can be told to fail.
    """

    def __init__(self):
        self.bookings = []
        self.cancellations = []
        self.external_ref = "evt-1001"
        self.warning = None
        self.raises = None

    async def record_booking(self, meeting):
        self.bookings.append(meeting.id)
        if self.raises is not None:
            raise self.raises
        return RecorderOutcome(ok=self.warning is None, warning=self.warning, external_ref=self.external_ref)

    async def record_cancellation(self, meeting, external_ref):
        self.cancellations.append((meeting.id, external_ref))
        if self.raises is not None:
            raise self.raises
        return RecorderOutcome(ok=self.warning is None, warning=self.warning)


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()
