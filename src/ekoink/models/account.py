"""Account model."""

from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.orm import relationship

from ..database import Base, new_id, utcnow


class Account(Base):
    """A customer company; owns users, deals and API keys."""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=new_id)
    company_name = Column(String, nullable=False)
    # "credits" for dashboard customers, "api_invoice" for monthly-billed API customers
    billing_type = Column(String, nullable=False, default="credits")
    api_monthly_limit = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="account")

    def __repr__(self):
        return f"<Account(id='{self.id}', company_name='{self.company_name}')>"
