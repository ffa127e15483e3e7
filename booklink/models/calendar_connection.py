# booklink/models/calendar_connection.py
from sqlalchemy import JSON, Column, Integer, String, Text, UniqueConstraint

from booklink.db.base import Base
from booklink.db.types import UTCDateTime, utcnow


class CalendarConnection(Base):
    """
    OAuth credentials linking one internal user to one calendar provider.

    Rows are created by the OAuth handshake (outside this service) and only
    mutated here when an access token is refreshed.
    """

    __tablename__ = "calendar_connections"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(32), nullable=False)

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(UTCDateTime(), nullable=True)

    # Empty/None means the provider's primary calendar.
    selected_calendar_ids = Column(JSON, nullable=True)

    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider",
            name="uq_calendar_connections_user_provider",
        ),
    )

    @property
    def calendar_ids(self) -> list[str]:
        return list(self.selected_calendar_ids or []) or ["primary"]

    def __repr__(self) -> str:
        return (
            f"<CalendarConnection id={self.id} user_id={self.user_id} "
            f"provider={self.provider}>"
        )
