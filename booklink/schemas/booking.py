# booklink/schemas/booking.py

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BookingRequestStatus(str, Enum):
    """
    Lifecycle states of a shareable booking link.
    """

    OPEN = "Open"
    COMPLETED = "Completed"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


class MeetingStatus(str, Enum):
    PROPOSED = "Proposed"
    BOOKED = "Booked"
    CANCELLED = "Cancelled"


class LocationMode(str, Enum):
    REMOTE = "Remote"
    IN_PERSON = "InPerson"


class BookingState(str, Enum):
    """
    What the public booking page should render for a link.
    """

    NEEDS_SCHEDULING = "needs_scheduling"
    ALREADY_BOOKED = "already_booked"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AuditAction(str, Enum):
    BOOKED = "Booked"
    RESCHEDULED = "Rescheduled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


# --------------------------------------------------------------------------
# Public: confirm / manage
# --------------------------------------------------------------------------

class ConfirmBookingRequest(BaseModel):
    """
    Payload sent by the external party when they pick a slot.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1, description="Booking link token.")
    start_datetime: datetime = Field(
        ...,
        alias="startDatetime",
        description="Chosen slot start (ISO-8601 with offset).",
        examples=["2026-01-12T14:00:00Z"],
    )
    end_datetime: datetime = Field(
        ...,
        alias="endDatetime",
        description="Chosen slot end (ISO-8601 with offset).",
        examples=["2026-01-12T15:00:00Z"],
    )


class ManageBookingRequest(BaseModel):
    """
    Payload for the self-service reschedule / cancel actions.
    """

    token: str = Field(..., min_length=1, description="Booking link token.")
    action: Literal["reschedule", "cancel"] = Field(
        ...,
        description="Requested change to the booking.",
        examples=["reschedule"],
    )


class BookingActionResponse(BaseModel):
    """
    Shared response of confirm, reschedule and cancel.

    `warnings` signals a partial downstream failure on a fully successful
    booking change; `error` means the change did not happen.
    """

    success: bool = Field(..., description="Whether the booking change was committed.")
    warnings: list[str] | None = Field(
        default=None,
        description="Non-fatal downstream failures collected after the commit.",
    )
    error: str | None = Field(default=None, description="Why the change did not happen.")


# --------------------------------------------------------------------------
# Public: landing-page info
# --------------------------------------------------------------------------

class BookingInfoRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Booking link token.")


class SafeMeetingSummary(BaseModel):
    """
    Meeting details that are safe to show to the external party.
    """

    model_config = ConfigDict(populate_by_name=True)

    meeting_type_name: str = Field(..., alias="meetingTypeName")
    duration_minutes: int = Field(..., alias="durationMinutes")
    location_mode: LocationMode = Field(..., alias="locationMode")
    timezone: str
    start_datetime: datetime | None = Field(default=None, alias="startDatetime")
    end_datetime: datetime | None = Field(default=None, alias="endDatetime")


class PublicContact(BaseModel):
    phone: str | None = None
    email: str | None = None
    message: str | None = None


class BookingInfoResponse(BaseModel):
    state: BookingState | Literal["error"]
    meeting: SafeMeetingSummary | None = None
    contact: PublicContact | None = None
    error: str | None = None


# --------------------------------------------------------------------------
# Internal: issuing links
# --------------------------------------------------------------------------

class IssueBookingLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expires_in_days: int | None = Field(
        default=None,
        alias="expiresInDays",
        ge=1,
        le=90,
        description="Link lifetime; defaults to BOOKING_REQUEST_EXPIRES_DAYS.",
        examples=[7],
    )


class IssueBookingLinkResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., description="Opaque, unguessable link token.")
    url: str = Field(..., description="Public URL of the booking page.")
    expires_at: datetime = Field(..., alias="expiresAt")


class StaffCancelResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    booking_status: BookingRequestStatus = Field(..., alias="bookingStatus")
    meeting_status: MeetingStatus = Field(..., alias="meetingStatus")
