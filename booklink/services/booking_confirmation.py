# booklink/services/booking_confirmation.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from booklink.core.config import Settings, get_settings
from booklink.core.errors import (
    BookingAlreadyBookedError,
    BookingCancelledError,
    BookingChangeWindowError,
    BookingConflictError,
    BookingExpiredError,
    InvalidSlotError,
    InvalidTransitionError,
)
from booklink.core.logging_config import mask_token
from booklink.db.types import utcnow
from booklink.models.booking_request import BookingRequest
from booklink.models.meeting import Meeting
from booklink.schemas.booking import AuditAction, BookingRequestStatus, MeetingStatus
from booklink.services.booking_lifecycle import BookingLifecycle, add_audit
from booklink.services.downstream_recorder import DownstreamRecorder, RecorderOutcome
from booklink.services.scheduling_policy import change_cutoff_hours

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    success: bool
    warnings: List[str] = field(default_factory=list)
    meeting_start: Optional[datetime] = None
    meeting_end: Optional[datetime] = None


class BookingConfirmation:
    """
    Write path of a booking link: confirm, reschedule and cancel.

    Guarantees
    ----------
    - At most one confirmation per link: the Open -> Completed transition is a
      single conditional UPDATE and only the caller that moved the row wins.
    - The reservation and its meeting/audit changes commit together.
    - The downstream recorder runs after the commit; anything it reports, or
      raises, becomes a warning on an otherwise successful result.
    """

    def __init__(
        self,
        db: AsyncSession,
        recorder: DownstreamRecorder,
        settings: Optional[Settings] = None,
    ) -> None:
        self._db = db
        self._recorder = recorder
        self._settings = settings or get_settings()
        self._lifecycle = BookingLifecycle(db)

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------
    async def confirm(
        self,
        token: str,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        now = now or utcnow()
        if start.tzinfo is None or end.tzinfo is None:
            raise InvalidSlotError("Slot times must include a timezone offset.")
        start = start.astimezone(timezone.utc)
        end = end.astimezone(timezone.utc)

        try:
            request, meeting = await self._lifecycle.require_open(token, now)
        except BookingAlreadyBookedError as exc:
            raise BookingConflictError() from exc

        if end <= start:
            raise InvalidSlotError("The selected slot ends before it starts.")
        if end - start != timedelta(minutes=meeting.duration_minutes):
            raise InvalidSlotError(
                f"The selected slot must be exactly {meeting.duration_minutes} minutes long."
            )
        if start < now:
            raise InvalidSlotError("The selected time is in the past.")

        result = await self._db.execute(
            update(BookingRequest)
            .where(
                BookingRequest.token == token,
                BookingRequest.status == BookingRequestStatus.OPEN.value,
                BookingRequest.expires_at > now,
            )
            .values(status=BookingRequestStatus.COMPLETED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            await self._db.refresh(request)
            logger.info(
                "Lost confirmation for link %s (status now %s)",
                mask_token(token),
                request.status,
            )
            if request.status == BookingRequestStatus.EXPIRED.value or (
                request.status == BookingRequestStatus.OPEN.value and request.expires_at <= now
            ):
                raise BookingExpiredError()
            if request.status == BookingRequestStatus.CANCELLED.value:
                raise BookingCancelledError()
            raise BookingConflictError()

        request.status = BookingRequestStatus.COMPLETED.value
        request.completed_at = now
        meeting.start_time = start
        meeting.end_time = end
        meeting.status = MeetingStatus.BOOKED.value
        add_audit(
            self._db,
            meeting.id,
            AuditAction.BOOKED,
            bookingRequestId=request.id,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        await self._db.commit()
        logger.info("Meeting %s booked for %s via link %s", meeting.id, start.isoformat(), mask_token(token))

        warnings = await self._notify(self._recorder.record_booking, meeting)
        return BookingResult(success=True, warnings=warnings, meeting_start=start, meeting_end=end)

    # ------------------------------------------------------------------
    # Reschedule / cancel
    # ------------------------------------------------------------------
    async def reschedule(self, token: str, now: Optional[datetime] = None) -> BookingResult:
        """
        Re-open a booked link so the participant can pick a new time.
        """
        now = now or utcnow()
        request, meeting = await self._lifecycle.get_request(token)

        if (
            meeting.status == MeetingStatus.CANCELLED.value
            or request.status == BookingRequestStatus.CANCELLED.value
        ):
            raise BookingCancelledError()
        if request.status != BookingRequestStatus.COMPLETED.value:
            raise InvalidTransitionError("Only a booked appointment can be rescheduled.")
        self._check_change_window(meeting, now)

        new_expiry = now + timedelta(days=max(1, self._settings.BOOKING_REQUEST_EXPIRES_DAYS))
        result = await self._db.execute(
            update(BookingRequest)
            .where(
                BookingRequest.id == request.id,
                BookingRequest.status == BookingRequestStatus.COMPLETED.value,
            )
            .values(
                status=BookingRequestStatus.OPEN.value,
                expires_at=new_expiry,
                completed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            raise InvalidTransitionError("This booking was changed by another request.")

        previous_start = meeting.start_time
        previous_end = meeting.end_time
        external_ref = meeting.external_event_ref

        request.status = BookingRequestStatus.OPEN.value
        request.expires_at = new_expiry
        request.completed_at = None
        meeting.start_time = None
        meeting.end_time = None
        meeting.status = MeetingStatus.PROPOSED.value
        meeting.external_event_ref = None
        add_audit(
            self._db,
            meeting.id,
            AuditAction.RESCHEDULED,
            bookingRequestId=request.id,
            previousStart=previous_start.isoformat() if previous_start else None,
            previousEnd=previous_end.isoformat() if previous_end else None,
            expiresAt=new_expiry.isoformat(),
        )
        await self._db.commit()
        logger.info("Meeting %s re-opened for scheduling via link %s", meeting.id, mask_token(token))

        warnings = await self._notify(
            lambda m: self._recorder.record_cancellation(m, external_ref), meeting
        )
        return BookingResult(success=True, warnings=warnings)

    async def cancel(self, token: str, now: Optional[datetime] = None) -> BookingResult:
        """
        Participant cancellation. Terminal, and idempotent once cancelled.
        """
        now = now or utcnow()
        request, meeting = await self._lifecycle.get_request(token)

        if (
            meeting.status == MeetingStatus.CANCELLED.value
            or request.status == BookingRequestStatus.CANCELLED.value
        ):
            return BookingResult(success=True)

        if request.status == BookingRequestStatus.COMPLETED.value:
            self._check_change_window(meeting, now)
            expected = BookingRequestStatus.COMPLETED.value
        elif request.status == BookingRequestStatus.OPEN.value:
            if request.expires_at <= now:
                await self._lifecycle.expire_if_due(request, now)
                raise BookingExpiredError()
            expected = BookingRequestStatus.OPEN.value
        else:
            raise BookingExpiredError()

        criteria = [BookingRequest.id == request.id, BookingRequest.status == expected]
        if expected == BookingRequestStatus.OPEN.value:
            criteria.append(BookingRequest.expires_at > now)

        result = await self._db.execute(
            update(BookingRequest)
            .where(*criteria)
            .values(status=BookingRequestStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            raise InvalidTransitionError("This booking was changed by another request.")

        external_ref = meeting.external_event_ref
        request.status = BookingRequestStatus.CANCELLED.value
        meeting.status = MeetingStatus.CANCELLED.value
        add_audit(
            self._db,
            meeting.id,
            AuditAction.CANCELLED,
            bookingRequestId=request.id,
            previousStatus=expected,
            by="participant",
        )
        await self._db.commit()
        logger.info("Meeting %s cancelled by participant via link %s", meeting.id, mask_token(token))

        warnings = await self._notify(
            lambda m: self._recorder.record_cancellation(m, external_ref), meeting
        )
        return BookingResult(success=True, warnings=warnings)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_change_window(self, meeting: Meeting, now: datetime) -> None:
        if meeting.start_time is None:
            return
        hours = change_cutoff_hours(meeting.preferences, self._settings)
        if meeting.start_time - now < timedelta(hours=hours):
            raise BookingChangeWindowError(
                "Changes are not allowed within "
                f"{hours:g} hours of the appointment. "
                "Please contact our office."
            )

    async def _notify(
        self,
        call: Callable[[Meeting], Awaitable[RecorderOutcome]],
        meeting: Meeting,
    ) -> List[str]:
        """
        Run one recorder call after the commit and turn its problems into warnings.
        """
        try:
            outcome = await call(meeting)
        except Exception as exc:  # the booking is committed; report, never undo
            logger.exception("Downstream recorder failed for meeting %s", meeting.id)
            return [f"The booking was saved, but a downstream update failed: {exc}"]

        warnings: List[str] = []
        if outcome.warning:
            warnings.append(outcome.warning)

        if outcome.external_ref and outcome.external_ref != meeting.external_event_ref:
            try:
                meeting.external_event_ref = outcome.external_ref
                await self._db.commit()
            except SQLAlchemyError as exc:
                await self._db.rollback()
                logger.warning(
                    "Could not store external ref %s on meeting %s: %s",
                    outcome.external_ref,
                    meeting.id,
                    exc,
                )
                warnings.append("The booking was saved, but its downstream reference was not stored.")
        return warnings
