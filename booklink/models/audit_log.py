# booklink/models/audit_log.py
from sqlalchemy import JSON, Column, ForeignKey, Integer, String

from booklink.db.base import Base
from booklink.db.types import UTCDateTime, utcnow


class AuditLog(Base):
    """
    Append-only record of lifecycle transitions applied to a meeting.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    meeting_id = Column(
        Integer,
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action = Column(String(32), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} meeting_id={self.meeting_id} action={self.action}>"
