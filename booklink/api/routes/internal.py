# booklink/api/routes/internal.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booklink.api.dependencies.internal_auth import verify_internal_api_key
from booklink.core.config import get_settings
from booklink.core.errors import BookingError
from booklink.db.session import get_db
from booklink.models.meeting import Meeting
from booklink.schemas.booking import (
    BookingRequestStatus,
    IssueBookingLinkRequest,
    IssueBookingLinkResponse,
    MeetingStatus,
    StaffCancelResponse,
)
from booklink.services.booking_lifecycle import BookingLifecycle

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.post(
    "/meetings/{meeting_id}/booking-requests",
    response_model=IssueBookingLinkResponse,
    status_code=HTTPStatus.CREATED,
    summary="Issue a booking link for a meeting",
    description=(
        "Creates a new single-use booking link for the meeting and returns its "
        "public URL. Any link still open for the same meeting is superseded "
        "(moved to `Cancelled`).\n\n"
        "Protected via the `X-Internal-Api-Key` header when configured."
    ),
    responses={
        201: {
            "description": "Link issued.",
            "content": {
                "application/json": {
                    "example": {
                        "token": "q3V0b2tlbi1leGFtcGxlLW5vdC1yZWFs",
                        "url": "https://book.example.com/r/q3V0b2tlbi1leGFtcGxlLW5vdC1yZWFs",
                        "expiresAt": "2026-01-19T14:00:00Z",
                    }
                }
            },
        },
        401: {"description": "Missing or invalid internal API key (if configured)."},
        404: {"description": "Meeting not found."},
        409: {"description": "The meeting is already booked or cancelled."},
    },
)
async def issue_booking_link(
    meeting_id: int = Path(..., description="Meeting to schedule.", examples=[42]),
    payload: IssueBookingLinkRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> IssueBookingLinkResponse:
    meeting = (
        await db.execute(select(Meeting).where(Meeting.id == meeting_id))
    ).scalar_one_or_none()
    if meeting is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Meeting with id={meeting_id} not found.",
        )

    expires_in_days = payload.expires_in_days if payload is not None else None
    try:
        request = await BookingLifecycle(db).issue(meeting, expires_in_days=expires_in_days)
    except BookingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    base_url = get_settings().PUBLIC_BASE_URL.rstrip("/")
    return IssueBookingLinkResponse(
        token=request.token,
        url=f"{base_url}/r/{request.token}",
        expires_at=request.expires_at,
    )


@router.post(
    "/booking-requests/{token}/cancel",
    response_model=StaffCancelResponse,
    status_code=HTTPStatus.OK,
    summary="Withdraw an open booking link",
    description=(
        "Staff-side cancellation of a link that has not been used yet. The "
        "meeting is cancelled with it. Withdrawing an already withdrawn link is "
        "a no-op."
    ),
    responses={
        401: {"description": "Missing or invalid internal API key (if configured)."},
        404: {"description": "Unknown token."},
        409: {"description": "The link was already used or has expired."},
    },
)
async def cancel_booking_link(
    token: str = Path(..., description="Booking link token."),
    db: AsyncSession = Depends(get_db),
) -> StaffCancelResponse:
    try:
        request, meeting = await BookingLifecycle(db).cancel_by_staff(token)
    except BookingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    return StaffCancelResponse(
        success=True,
        booking_status=BookingRequestStatus(request.status),
        meeting_status=MeetingStatus(meeting.status),
    )
