from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from ..database import Base, new_id, utcnow


class Deal(Base):
    """A closed sale; the customer who receives the thank-you note."""

    __tablename__ = "deals"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    customer_first_name = Column(String, nullable=False)
    customer_last_name = Column(String, nullable=False)
    customer_address = Column(JSON)

    product_name = Column(String)
    deal_value = Column(Float)
    closed_at = Column(DateTime(timezone=True), default=utcnow)
    personal_detail = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    notes = relationship("Note", back_populates="deal")
    calls = relationship("Call", back_populates="deal")

    def __repr__(self):
        return f"<Deal(id='{self.id}', customer='{self.customer_first_name} {self.customer_last_name}')>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "customer_first_name": self.customer_first_name,
            "customer_last_name": self.customer_last_name,
            "customer_address": self.customer_address,
            "product_name": self.product_name,
            "deal_value": self.deal_value,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "personal_detail": self.personal_detail,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Call(Base):
    """Sales call recording and its transcript."""

    __tablename__ = "calls"

    id = Column(String, primary_key=True, default=new_id)
    deal_id = Column(String, ForeignKey("deals.id"), nullable=False, index=True)

    mp3_url = Column(String)
    duration_seconds = Column(Integer)
    transcript = Column(Text)
    transcript_status = Column(String, nullable=False, default="pending")
    transcribed_at = Column(DateTime(timezone=True))

    deal = relationship("Deal", back_populates="calls")

    def to_dict(self):
        return {
            "id": self.id,
            "mp3_url": self.mp3_url,
            "duration_seconds": self.duration_seconds,
            "transcript": self.transcript,
            "transcript_status": self.transcript_status,
            "transcribed_at": self.transcribed_at.isoformat() if self.transcribed_at else None,
        }
