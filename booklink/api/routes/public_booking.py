# booklink/api/routes/public_booking.py
from http import HTTPStatus

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from booklink.api.dependencies.booking import get_credential_store, get_provider_factory
from booklink.core.config import get_settings
from booklink.core.errors import (
    BookingAlreadyBookedError,
    BookingCancelledError,
    BookingError,
    BookingExpiredError,
    BookingNotFoundError,
    InvalidTimezoneError,
)
from booklink.db.session import get_db
from booklink.db.types import utcnow
from booklink.schemas.availability import AvailableSlotsRequest, AvailableSlotsResponse
from booklink.schemas.booking import (
    BookingActionResponse,
    BookingInfoRequest,
    BookingInfoResponse,
    BookingState,
    ConfirmBookingRequest,
    ManageBookingRequest,
    PublicContact,
    SafeMeetingSummary,
)
from booklink.services.availability import AvailabilityService
from booklink.services.booking_confirmation import BookingConfirmation
from booklink.services.booking_lifecycle import BookingLifecycle
from booklink.services.busy_aggregator import ProviderFactory
from booklink.services.credential_store import CredentialStore
from booklink.services.downstream_recorder import DownstreamRecorder, get_downstream_recorder

router = APIRouter(prefix="/public/booking", tags=["Public booking"])


def _state_for(exc: BookingError) -> str | None:
    if isinstance(exc, BookingCancelledError):
        return BookingState.CANCELLED.value
    if isinstance(exc, BookingExpiredError):
        return BookingState.EXPIRED.value
    if isinstance(exc, BookingAlreadyBookedError):
        return BookingState.ALREADY_BOOKED.value
    return None


def _action_error(exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=BookingActionResponse(success=False, error=exc.message).model_dump(exclude_none=True),
    )


@router.post(
    "/slots",
    response_model=AvailableSlotsResponse,
    response_model_exclude_none=True,
    status_code=HTTPStatus.OK,
    summary="List bookable slots for a booking link",
    description=(
        "Returns up to the configured number of slots that are free on every "
        "participant's calendar (and the room's, for in-person meetings), within "
        "business hours and after the minimum notice.\n\n"
        "An empty `slots` list without `error` means there is no availability. "
        "`diagnostic=calendars_unreachable` means no calendar could be read."
    ),
    responses={
        200: {
            "description": "Slots computed.",
            "content": {
                "application/json": {
                    "example": {
                        "slots": [
                            {
                                "start": "2026-01-12T15:30:00Z",
                                "end": "2026-01-12T16:30:00Z",
                                "label": "Monday, Jan 12 at 10:30 AM",
                            }
                        ]
                    }
                }
            },
        },
        400: {"description": "Link expired or cancelled, or an unknown timezone was sent."},
        404: {"description": "Unknown token."},
    },
)
async def fetch_available_slots(
    payload: AvailableSlotsRequest,
    db: AsyncSession = Depends(get_db),
    credential_store: CredentialStore = Depends(get_credential_store),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """
    Read path of the public booking page.

    Busy intervals, participant identities and calendar ids never appear in
    the response.
    """
    service = AvailabilityService(db, credential_store, provider_factory)
    try:
        result = await service.fetch_slots(
            payload.token,
            client_timezone=payload.client_timezone,
            date_cursor=payload.date_cursor,
        )
    except BookingError as exc:
        body = AvailableSlotsResponse(error=exc.message, state=_state_for(exc))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))
    except InvalidTimezoneError as exc:
        body = AvailableSlotsResponse(error=str(exc))
        return JSONResponse(status_code=HTTPStatus.BAD_REQUEST, content=body.model_dump(exclude_none=True))

    return AvailableSlotsResponse(slots=result.slots, diagnostic=result.diagnostic)


@router.post(
    "/confirm",
    response_model=BookingActionResponse,
    response_model_exclude_none=True,
    status_code=HTTPStatus.OK,
    summary="Confirm a slot for a booking link",
    description=(
        "Books the chosen slot exactly once per link. A second confirmation, "
        "concurrent or not, answers 409.\n\n"
        "`warnings` lists downstream side-effects that failed after the booking "
        "was saved; the booking itself stands."
    ),
    responses={
        200: {
            "description": "Booking saved.",
            "content": {"application/json": {"example": {"success": True}}},
        },
        400: {"description": "Link expired or cancelled, or the slot is invalid."},
        404: {"description": "Unknown token."},
        409: {
            "description": "The link was already used.",
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "error": "This link is no longer open. Your meeting has already been booked.",
                    }
                }
            },
        },
    },
)
async def confirm_booking(
    payload: ConfirmBookingRequest,
    db: AsyncSession = Depends(get_db),
    recorder: DownstreamRecorder = Depends(get_downstream_recorder),
):
    confirmation = BookingConfirmation(db, recorder)
    try:
        result = await confirmation.confirm(
            payload.token,
            payload.start_datetime,
            payload.end_datetime,
        )
    except BookingError as exc:
        return _action_error(exc)

    return BookingActionResponse(success=True, warnings=result.warnings or None)


@router.post(
    "/manage",
    response_model=BookingActionResponse,
    response_model_exclude_none=True,
    status_code=HTTPStatus.OK,
    summary="Reschedule or cancel a booked appointment",
    description=(
        "- `reschedule` re-opens the link with a fresh expiry and clears the booked time.\n"
        "- `cancel` is terminal; repeating it is a no-op.\n\n"
        "Both are refused within the change cutoff before the appointment."
    ),
    responses={
        400: {"description": "Inside the change cutoff, expired or cancelled."},
        404: {"description": "Unknown token."},
        409: {"description": "The booking is not in a state that allows this change."},
    },
)
async def manage_booking(
    payload: ManageBookingRequest,
    db: AsyncSession = Depends(get_db),
    recorder: DownstreamRecorder = Depends(get_downstream_recorder),
):
    confirmation = BookingConfirmation(db, recorder)
    try:
        if payload.action == "reschedule":
            result = await confirmation.reschedule(payload.token)
        else:
            result = await confirmation.cancel(payload.token)
    except BookingError as exc:
        return _action_error(exc)

    return BookingActionResponse(success=True, warnings=result.warnings or None)


@router.post(
    "/info",
    response_model=BookingInfoResponse,
    response_model_exclude_none=True,
    response_model_by_alias=True,
    status_code=HTTPStatus.OK,
    summary="Landing-page view of a booking link",
    description=(
        "Tells the booking page which state to render (`needs_scheduling`, "
        "`already_booked`, `expired`, `cancelled`) together with the meeting "
        "details that are safe to show and the office contact settings."
    ),
    responses={404: {"description": "Unknown token."}},
)
async def booking_info(
    payload: BookingInfoRequest,
    db: AsyncSession = Depends(get_db),
):
    lifecycle = BookingLifecycle(db)
    try:
        request, meeting = await lifecycle.get_request(payload.token)
    except BookingNotFoundError as exc:
        body = BookingInfoResponse(state="error", error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))

    now = utcnow()
    await lifecycle.expire_if_due(request, now)
    state = lifecycle.evaluate(request, meeting, now)

    settings = get_settings()
    contact = None
    if settings.PUBLIC_CONTACT_PHONE or settings.PUBLIC_CONTACT_EMAIL or settings.PUBLIC_CONTACT_MESSAGE:
        contact = PublicContact(
            phone=settings.PUBLIC_CONTACT_PHONE,
            email=settings.PUBLIC_CONTACT_EMAIL,
            message=settings.PUBLIC_CONTACT_MESSAGE,
        )

    return BookingInfoResponse(
        state=state,
        meeting=SafeMeetingSummary(
            meeting_type_name=meeting.meeting_type_name,
            duration_minutes=meeting.duration_minutes,
            location_mode=meeting.location_mode,
            timezone=meeting.timezone,
            start_datetime=meeting.start_time,
            end_datetime=meeting.end_time,
        ),
        contact=contact,
    )
