# booklink/schemas/availability.py

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BusyInterval(BaseModel):
    """
    A provider-reported range during which a calendar resource is unavailable.

    Transient: computed per request and never returned to the external party.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "BusyInterval":
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("busy interval bounds must be timezone-aware")
        if self.end < self.start:
            raise ValueError("busy interval ends before it starts")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


class TimeSlot(BaseModel):
    """
    A candidate meeting time free for every required participant and resource.
    """

    start: datetime = Field(..., examples=["2026-01-12T15:30:00Z"])
    end: datetime = Field(..., examples=["2026-01-12T16:30:00Z"])
    label: str = Field(..., examples=["Monday, Jan 12 at 10:30 AM"])


class AvailableSlotsRequest(BaseModel):
    """
    Payload of the public fetch-slots call.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1, description="Booking link token.")
    client_timezone: str | None = Field(
        default=None,
        alias="clientTimezone",
        description="IANA zone used to label slots; defaults to the meeting's zone.",
        examples=["America/Chicago"],
    )
    date_cursor: date | None = Field(
        default=None,
        alias="dateCursor",
        description="First day to search from; defaults to today.",
        examples=["2026-01-12"],
    )


class AvailableSlotsResponse(BaseModel):
    """
    Only derived free slots and their labels ever leave the service; busy
    intervals and participant identities do not.
    """

    slots: list[TimeSlot] = Field(default_factory=list)
    error: str | None = None
    state: str | None = Field(
        default=None,
        description="Terminal-state view to redirect to when the link is not open.",
    )
    diagnostic: str | None = Field(
        default=None,
        description=(
            "Set to 'calendars_unreachable' when no calendar could be checked, "
            "so operators can tell it apart from a genuinely full schedule."
        ),
    )
