"""Outbox rows for work that runs after the response is sent."""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Text

from ..database import Base, new_id, utcnow


class BackgroundTask(Base):
    __tablename__ = "background_tasks"

    id = Column(String, primary_key=True, default=new_id)
    kind = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    # queued -> running -> succeeded | failed
    status = Column(String, nullable=False, default="queued", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<BackgroundTask(id='{self.id}', kind='{self.kind}', status='{self.status}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }
