# booklink/services/booking_lifecycle.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booklink.core.config import get_settings
from booklink.core.errors import (
    BookingAlreadyBookedError,
    BookingCancelledError,
    BookingExpiredError,
    BookingNotFoundError,
    InvalidTransitionError,
)
from booklink.core.logging_config import mask_token
from booklink.db.types import utcnow
from booklink.models.audit_log import AuditLog
from booklink.models.booking_request import BookingRequest
from booklink.models.meeting import Meeting
from booklink.schemas.booking import (
    AuditAction,
    BookingRequestStatus,
    BookingState,
    MeetingStatus,
)

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def add_audit(db: AsyncSession, meeting_id: int, action: AuditAction, **details: Any) -> AuditLog:
    """
    Stage an audit row in the caller's transaction.
    """
    entry = AuditLog(meeting_id=meeting_id, action=action.value, details=details or None)
    db.add(entry)
    return entry


class BookingLifecycle:
    """
    State machine of BookingRequest rows.

        Open ──confirm──> Completed ──reschedule──> Open
          │                   │
          │ deadline          └──cancel──> Cancelled
          v
        Expired

    Every transition is a conditional UPDATE on the current status, so two
    concurrent callers can never both move the same row out of a state.
    Expiry is applied lazily when a link is accessed; nothing sweeps in the
    background.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_request(self, token: str) -> Tuple[BookingRequest, Meeting]:
        if not token:
            raise BookingNotFoundError()
        stmt = select(BookingRequest).where(BookingRequest.token == token)
        request = (await self._db.execute(stmt)).scalar_one_or_none()
        if request is None or request.meeting is None:
            logger.info("Booking link %s not found", mask_token(token))
            raise BookingNotFoundError()
        return request, request.meeting

    @staticmethod
    def evaluate(request: BookingRequest, meeting: Meeting, now: datetime) -> BookingState:
        """
        Which view the link resolves to. Cancelled wins, then expired, then booked.
        """
        if (
            request.status == BookingRequestStatus.CANCELLED.value
            or meeting.status == MeetingStatus.CANCELLED.value
        ):
            return BookingState.CANCELLED
        if request.status == BookingRequestStatus.EXPIRED.value or (
            request.status == BookingRequestStatus.OPEN.value and request.expires_at <= now
        ):
            return BookingState.EXPIRED
        if (
            request.status == BookingRequestStatus.COMPLETED.value
            or meeting.status == MeetingStatus.BOOKED.value
        ):
            return BookingState.ALREADY_BOOKED
        return BookingState.NEEDS_SCHEDULING

    async def expire_if_due(self, request: BookingRequest, now: datetime) -> bool:
        """
        Move an Open request past its deadline to Expired. Returns True when
        this call performed the transition.
        """
        if request.status != BookingRequestStatus.OPEN.value or request.expires_at > now:
            return False

        result = await self._db.execute(
            update(BookingRequest)
            .where(
                BookingRequest.id == request.id,
                BookingRequest.status == BookingRequestStatus.OPEN.value,
                BookingRequest.expires_at <= now,
            )
            .values(status=BookingRequestStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.commit()
            await self._db.refresh(request)
            return False

        add_audit(
            self._db,
            request.meeting_id,
            AuditAction.EXPIRED,
            bookingRequestId=request.id,
            expiresAt=request.expires_at.isoformat(),
        )
        await self._db.commit()
        request.status = BookingRequestStatus.EXPIRED.value
        logger.info("Booking request %s expired (deadline %s)", request.id, request.expires_at.isoformat())
        return True

    async def require_open(
        self,
        token: str,
        now: Optional[datetime] = None,
    ) -> Tuple[BookingRequest, Meeting]:
        """
        Guard used by every read path of a link.

        Raises BookingNotFoundError, BookingCancelledError, BookingExpiredError
        or BookingAlreadyBookedError when the link is not open for scheduling.
        """
        now = now or utcnow()
        request, meeting = await self.get_request(token)
        await self.expire_if_due(request, now)

        state = self.evaluate(request, meeting, now)
        if state == BookingState.CANCELLED:
            raise BookingCancelledError()
        if state == BookingState.EXPIRED:
            raise BookingExpiredError()
        if state == BookingState.ALREADY_BOOKED:
            raise BookingAlreadyBookedError()
        return request, meeting

    async def issue(
        self,
        meeting: Meeting,
        expires_in_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        """
        Create a fresh Open link for `meeting`, superseding any link still open.
        """
        now = now or utcnow()
        if meeting.status == MeetingStatus.CANCELLED.value:
            raise InvalidTransitionError("A cancelled meeting cannot receive a booking link.")
        if meeting.status == MeetingStatus.BOOKED.value:
            raise InvalidTransitionError("This meeting is already booked; reschedule it instead.")

        days = expires_in_days or get_settings().BOOKING_REQUEST_EXPIRES_DAYS
        days = max(1, days)

        superseded = await self._db.execute(
            update(BookingRequest)
            .where(
                BookingRequest.meeting_id == meeting.id,
                BookingRequest.status == BookingRequestStatus.OPEN.value,
            )
            .values(status=BookingRequestStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if superseded.rowcount:
            logger.info("Meeting %s: superseded %d open booking link(s)", meeting.id, superseded.rowcount)

        request = BookingRequest(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            meeting_id=meeting.id,
            status=BookingRequestStatus.OPEN.value,
            expires_at=now + timedelta(days=days),
            created_at=now,
        )
        self._db.add(request)
        await self._db.commit()

        logger.info(
            "Issued booking link %s for meeting %s (expires %s)",
            mask_token(request.token),
            meeting.id,
            request.expires_at.isoformat(),
        )
        return request

    async def cancel_by_staff(
        self,
        token: str,
        now: Optional[datetime] = None,
    ) -> Tuple[BookingRequest, Meeting]:
        """
        Withdraw an Open link; the meeting is cancelled with it.
        """
        now = now or utcnow()
        request, meeting = await self.get_request(token)
        if request.status == BookingRequestStatus.CANCELLED.value:
            return request, meeting

        result = await self._db.execute(
            update(BookingRequest)
            .where(
                BookingRequest.id == request.id,
                BookingRequest.status == BookingRequestStatus.OPEN.value,
            )
            .values(status=BookingRequestStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            await self._db.refresh(request)
            raise InvalidTransitionError(
                f"Only open links can be withdrawn (current status: {request.status})."
            )

        meeting.status = MeetingStatus.CANCELLED.value
        add_audit(
            self._db,
            meeting.id,
            AuditAction.CANCELLED,
            bookingRequestId=request.id,
            by="staff",
            at=now.isoformat(),
        )
        await self._db.commit()
        request.status = BookingRequestStatus.CANCELLED.value

        logger.info("Staff withdrew booking link %s for meeting %s", mask_token(token), meeting.id)
        return request, meeting
