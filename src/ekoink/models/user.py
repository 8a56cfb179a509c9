"""User model."""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base, new_id, utcnow


class User(Base):
    """A sales rep. Carries the voice profile learned from approved notes."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String)

    notes_sent_count = Column(Integer, nullable=False, default=0)
    learning_complete = Column(Boolean, nullable=False, default=False)
    tone_preferences = Column(JSON)
    # Bumped on every profile write; writers compare-and-set against it
    profile_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    account = relationship("Account", back_populates="users")

    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}')>"
