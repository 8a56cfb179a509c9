from sqlalchemy import Column, String, DateTime, JSON

from ..database import Base, new_id, utcnow


class Event(Base):
    """Audit trail entry (note.approved, note.sent, learning.completed, ...)."""

    __tablename__ = "events"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, index=True)
    user_id = Column(String, index=True)
    event_type = Column(String, nullable=False)
    resource_type = Column(String)
    resource_id = Column(String)
    payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<Event(event_type='{self.event_type}', resource_id='{self.resource_id}')>"
