# booklink/models/booking_request.py
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from booklink.db.base import Base
from booklink.db.types import UTCDateTime, utcnow
from booklink.schemas.booking import BookingRequestStatus


class BookingRequest(Base):
    """
    The shareable-link entity that gates one meeting's confirmation.

    Rows are never deleted; a superseded link simply ends in a terminal status.
    """

    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True, index=True)

    token = Column(String(128), nullable=False, unique=True, index=True)

    meeting_id = Column(
        Integer,
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = Column(
        String(32),
        nullable=False,
        default=BookingRequestStatus.OPEN.value,
    )

    expires_at = Column(UTCDateTime(), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime(), nullable=True)

    meeting = relationship("Meeting", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<BookingRequest id={self.id} meeting_id={self.meeting_id} "
            f"status={self.status} expires_at={self.expires_at}>"
        )
