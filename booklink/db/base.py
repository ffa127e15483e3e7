# booklink/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models in the BookLink service.
    """
    pass


# Import ORM models so that Base.metadata is aware of them
# This import should stay at the bottom to avoid circular dependencies.
from booklink.models.room import Room  # noqa: E402,F401
from booklink.models.meeting import Meeting  # noqa: E402,F401
from booklink.models.booking_request import BookingRequest  # noqa: E402,F401
from booklink.models.calendar_connection import CalendarConnection  # noqa: E402,F401
from booklink.models.audit_log import AuditLog  # noqa: E402,F401
