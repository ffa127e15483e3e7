# booklink/models/room.py
from sqlalchemy import Column, Integer, String

from booklink.db.base import Base


class Room(Base):
    """
    A bookable physical room whose calendar is checked for in-person meetings.
    """

    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # Calendar identifier of the room resource (e.g. a Google/Exchange resource email).
    resource_email = Column(String(320), nullable=True)

    def __repr__(self) -> str:
        return f"<Room id={self.id} name={self.name!r}>"
