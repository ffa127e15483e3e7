# tests/test_public_booking_api.py
from datetime import datetime, timedelta, timezone
from http import HTTPStatus

import pytest

from booklink.api.dependencies.booking import get_credential_store, get_provider_factory
from booklink.core import config as config_module
from booklink.core.errors import ProviderError
from booklink.services.downstream_recorder import get_downstream_recorder

TOKEN = "link-token-0001"


class _FakeProvider:
    def __init__(self, outcome=None):
        self.outcome = outcome if outcome is not None else []

    async def fetch_busy(self, connection, calendar_ids, window_start, window_end):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def fetch_resource_busy(self, connection, resource_ids, window_start, window_end):
        return []


@pytest.fixture
def wire(client, recorder):
    """
    Point the public routes at fake calendars and the recording double.
    """

    def _wire(provider=None):
        provider = provider or _FakeProvider()
        client.app.dependency_overrides[get_provider_factory] = lambda: (lambda tag, store: provider)
        client.app.dependency_overrides[get_credential_store] = lambda: None
        client.app.dependency_overrides[get_downstream_recorder] = lambda: recorder
        return provider

    return _wire


def _first_slot(client) -> dict:
    resp = client.post("/public/booking/slots", json={"token": TOKEN})
    assert resp.status_code == HTTPStatus.OK
    return resp.json()["slots"][0]


# ---------------------------------------------------------------------------
# /slots
# ---------------------------------------------------------------------------

def test_slots_expose_only_times_and_labels(client, wire, make_booking, make_connection):
    make_booking(participant_ids=("host-1", "guest-2"))
    make_connection("host-1")
    wire()

    resp = client.post("/public/booking/slots", json={"token": TOKEN, "clientTimezone": "America/Chicago"})

    assert resp.status_code == HTTPStatus.OK
    body = resp.json()
    assert set(body.keys()) == {"slots"}
    assert 0 < len(body["slots"]) <= 30
    for slot in body["slots"]:
        assert set(slot.keys()) == {"start", "end", "label"}
        start = datetime.fromisoformat(slot["start"].replace("Z", "+00:00"))
        end = datetime.fromisoformat(slot["end"].replace("Z", "+00:00"))
        assert end - start == timedelta(minutes=60)
        assert " at " in slot["label"]


def test_slots_report_unreachable_calendars(client, wire, make_booking, make_connection):
    make_booking()
    make_connection("host-1")
    wire(_FakeProvider(ProviderError("vendor down")))

    resp = client.post("/public/booking/slots", json={"token": TOKEN})

    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {"slots": [], "diagnostic": "calendars_unreachable"}


def test_slots_for_unknown_token(client, wire):
    wire()

    resp = client.post("/public/booking/slots", json={"token": "nope"})

    assert resp.status_code == HTTPStatus.NOT_FOUND
    body = resp.json()
    assert body["slots"] == []
    assert body["error"] == "Booking link not found."


def test_slots_for_expired_link(client, wire, make_booking):
    make_booking(expires_at=datetime.now(tz=timezone.utc) - timedelta(minutes=1))
    wire()

    resp = client.post("/public/booking/slots", json={"token": TOKEN})

    assert resp.status_code == HTTPStatus.BAD_REQUEST
    body = resp.json()
    assert body["state"] == "expired"
    assert "expired" in body["error"].lower()


def test_slots_with_unknown_client_timezone(client, wire, make_booking):
    make_booking()
    wire()

    resp = client.post("/public/booking/slots", json={"token": TOKEN, "clientTimezone": "Not/AZone"})

    assert resp.status_code == HTTPStatus.BAD_REQUEST
    assert resp.json()["slots"] == []


# ---------------------------------------------------------------------------
# /confirm
# ---------------------------------------------------------------------------

def test_confirm_offered_slot_then_link_is_used(client, wire, make_booking, recorder):
    meeting, _ = make_booking()
    wire()
    slot = _first_slot(client)

    resp = client.post(
        "/public/booking/confirm",
        json={"token": TOKEN, "startDatetime": slot["start"], "endDatetime": slot["end"]},
    )
    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {"success": True}
    assert recorder.bookings == [meeting.id]

    again = client.post(
        "/public/booking/confirm",
        json={"token": TOKEN, "startDatetime": slot["start"], "endDatetime": slot["end"]},
    )
    assert again.status_code == HTTPStatus.CONFLICT
    assert again.json()["success"] is False

    slots = client.post("/public/booking/slots", json={"token": TOKEN})
    assert slots.json()["state"] == "already_booked"


def test_confirm_reports_downstream_warning(client, wire, make_booking, recorder):
    make_booking()
    wire()
    recorder.raises = RuntimeError("practice system down")
    slot = _first_slot(client)

    resp = client.post(
        "/public/booking/confirm",
        json={"token": TOKEN, "startDatetime": slot["start"], "endDatetime": slot["end"]},
    )

    assert resp.status_code == HTTPStatus.OK
    body = resp.json()
    assert body["success"] is True
    assert len(body["warnings"]) == 1


def test_confirm_on_expired_link(client, wire, make_booking):
    make_booking(expires_at=datetime.now(tz=timezone.utc) - timedelta(minutes=1))
    wire()
    start = (datetime.now(tz=timezone.utc) + timedelta(days=2)).replace(minute=0, second=0, microsecond=0)

    resp = client.post(
        "/public/booking/confirm",
        json={
            "token": TOKEN,
            "startDatetime": start.isoformat(),
            "endDatetime": (start + timedelta(hours=1)).isoformat(),
        },
    )

    assert resp.status_code == HTTPStatus.BAD_REQUEST
    assert resp.json()["success"] is False


def test_confirm_with_wrong_duration(client, wire, make_booking):
    make_booking()
    wire()
    start = (datetime.now(tz=timezone.utc) + timedelta(days=2)).replace(minute=0, second=0, microsecond=0)

    resp = client.post(
        "/public/booking/confirm",
        json={
            "token": TOKEN,
            "startDatetime": start.isoformat(),
            "endDatetime": (start + timedelta(minutes=15)).isoformat(),
        },
    )

    assert resp.status_code == HTTPStatus.BAD_REQUEST


# ---------------------------------------------------------------------------
# /manage
# ---------------------------------------------------------------------------

def _booked(make_booking, hours_ahead: int):
    start = (datetime.now(tz=timezone.utc) + timedelta(hours=hours_ahead)).replace(
        minute=0, second=0, microsecond=0
    )
    return make_booking(request_status="Completed", meeting_status="Booked", start_time=start)


def test_manage_reschedule_reopens_link(client, wire, make_booking):
    _booked(make_booking, hours_ahead=72)
    wire()

    resp = client.post("/public/booking/manage", json={"token": TOKEN, "action": "reschedule"})

    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {"success": True}
    info = client.post("/public/booking/info", json={"token": TOKEN}).json()
    assert info["state"] == "needs_scheduling"
    assert "startDatetime" not in info["meeting"]


def test_manage_cancel_inside_cutoff(client, wire, make_booking):
    _booked(make_booking, hours_ahead=4)
    wire()

    resp = client.post("/public/booking/manage", json={"token": TOKEN, "action": "cancel"})

    assert resp.status_code == HTTPStatus.BAD_REQUEST
    body = resp.json()
    assert body["success"] is False
    assert "24 hours" in body["error"]


def test_manage_rejects_unknown_action(client, wire, make_booking):
    make_booking()
    wire()

    resp = client.post("/public/booking/manage", json={"token": TOKEN, "action": "delete"})

    assert resp.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


# ---------------------------------------------------------------------------
# /info
# ---------------------------------------------------------------------------

def test_info_for_open_link(client, make_booking):
    make_booking()

    resp = client.post("/public/booking/info", json={"token": TOKEN})

    assert resp.status_code == HTTPStatus.OK
    body = resp.json()
    assert body["state"] == "needs_scheduling"
    assert body["meeting"] == {
        "meetingTypeName": "Initial Consultation",
        "durationMinutes": 60,
        "locationMode": "Remote",
        "timezone": "America/New_York",
    }
    assert "contact" not in body


def test_info_for_booked_link_includes_time(client, make_booking):
    _booked(make_booking, hours_ahead=72)

    body = client.post("/public/booking/info", json={"token": TOKEN}).json()

    assert body["state"] == "already_booked"
    assert body["meeting"]["startDatetime"]
    assert body["meeting"]["endDatetime"]


def test_info_for_expired_link_shows_contact(client, make_booking, monkeypatch):
    make_booking(expires_at=datetime.now(tz=timezone.utc) - timedelta(days=1))
    settings = config_module.Settings(PUBLIC_CONTACT_PHONE="+1 555 0100")
    monkeypatch.setattr("booklink.api.routes.public_booking.get_settings", lambda: settings)

    body = client.post("/public/booking/info", json={"token": TOKEN}).json()

    assert body["state"] == "expired"
    assert body["contact"] == {"phone": "+1 555 0100"}


def test_info_for_cancelled_link(client, make_booking):
    make_booking(request_status="Cancelled", meeting_status="Cancelled")

    body = client.post("/public/booking/info", json={"token": TOKEN}).json()

    assert body["state"] == "cancelled"


def test_info_for_unknown_token(client):
    resp = client.post("/public/booking/info", json={"token": "missing"})

    assert resp.status_code == HTTPStatus.NOT_FOUND
    assert resp.json() == {"state": "error", "error": "Booking link not found."}
