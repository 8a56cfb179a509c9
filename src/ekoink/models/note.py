"""Note model."""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from ..database import Base, new_id, utcnow


class NoteStatus:
    PENDING = "pending"
    DRAFT = "draft"
    APPROVED = "approved"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"

    ALL = (PENDING, DRAFT, APPROVED, SENT, DELIVERED, FAILED)


class Note(Base):
    """A thank-you note: AI draft, human-approved final text, mail order."""

    __tablename__ = "notes"

    id = Column(String, primary_key=True, default=new_id)
    deal_id = Column(String, ForeignKey("deals.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    call_id = Column(String, ForeignKey("calls.id"))

    draft_text = Column(Text, default="")
    final_text = Column(Text)
    status = Column(String, nullable=False, default=NoteStatus.PENDING, index=True)
    requires_approval = Column(Boolean, nullable=False, default=True)

    # Approval feedback (edit delta, written once at approval)
    feedback_given = Column(Boolean, nullable=False, default=False)
    feedback_changes = Column(JSON)

    # Handwrite.io order
    handwriteio_order_id = Column(String)
    handwriteio_status = Column(String)
    tracking_number = Column(String)
    estimated_delivery = Column(String)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    approved_at = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    deal = relationship("Deal", back_populates="notes")
    call = relationship("Call")

    def __repr__(self):
        return f"<Note(id='{self.id}', status='{self.status}')>"

    def to_dict(self):
        """Convert to dictionary."""

        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "user_id": self.user_id,
            "call_id": self.call_id,
            "draft_text": self.draft_text,
            "final_text": self.final_text,
            "status": self.status,
            "requires_approval": self.requires_approval,
            "feedback_given": self.feedback_given,
            "feedback_changes": self.feedback_changes,
            "handwriteio_order_id": self.handwriteio_order_id,
            "handwriteio_status": self.handwriteio_status,
            "tracking_number": self.tracking_number,
            "estimated_delivery": self.estimated_delivery,
            "created_at": iso(self.created_at),
            "approved_at": iso(self.approved_at),
            "sent_at": iso(self.sent_at),
            "delivered_at": iso(self.delivered_at),
        }
