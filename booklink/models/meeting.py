# booklink/models/meeting.py
from sqlalchemy import JSON, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from booklink.db.base import Base
from booklink.db.types import UTCDateTime, utcnow
from booklink.schemas.booking import LocationMode, MeetingStatus


class Meeting(Base):
    """
    A meeting waiting to be (or already) scheduled through a booking link.

    `start_time`/`end_time` stay empty until a confirmation succeeds and are
    only cleared again by an explicit reschedule.
    """

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, index=True)

    meeting_type_name = Column(String(255), nullable=False, default="Meeting")
    duration_minutes = Column(Integer, nullable=False, default=60)

    location_mode = Column(
        String(32),
        nullable=False,
        default=LocationMode.REMOTE.value,
    )

    # Ordered user references, host first.
    participant_ids = Column(JSON, nullable=False, default=list)

    room_id = Column(
        Integer,
        ForeignKey("rooms.id", ondelete="SET NULL"),
        nullable=True,
    )

    timezone = Column(String(64), nullable=False, default="America/New_York")

    status = Column(
        String(32),
        nullable=False,
        default=MeetingStatus.PROPOSED.value,
    )

    start_time = Column(UTCDateTime(), nullable=True)
    end_time = Column(UTCDateTime(), nullable=True)

    search_window_days = Column(Integer, nullable=False, default=14)

    # Per-meeting overrides of the scheduling policy (business hours, break,
    # minimum notice). Keys mirror the staff UI: businessHoursStart, ...
    preferences = Column(JSON, nullable=True)

    # Identifier assigned by the downstream recorder after a booking.
    external_event_ref = Column(String(255), nullable=True)

    # Where the native calendar copy of the booking lives:
    # {"connectionId": ..., "calendarId": ..., "eventId": ...}.
    calendar_event_ref = Column(JSON, nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    room = relationship("Room", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<Meeting id={self.id} status={self.status} "
            f"start={self.start_time} duration={self.duration_minutes}>"
        )
