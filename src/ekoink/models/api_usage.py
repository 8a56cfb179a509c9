from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint

from ..database import Base, new_id


class ApiUsage(Base):
    """Monthly usage counter for an account, used for invoicing and quotas."""

    __tablename__ = "api_usage"
    __table_args__ = (
        UniqueConstraint("account_id", "year", "month", name="uq_api_usage_month"),
    )

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    # Usage metrics
    cards_sent = Column(Integer, nullable=False, default=0)
    api_calls_count = Column(Integer, nullable=False, default=0)
    amount_owed_cents = Column(Integer, nullable=False, default=0)

    # Invoicing
    invoice_status = Column(String, nullable=False, default="pending")
    invoice_paid_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<ApiUsage(account_id='{self.account_id}', period='{self.year}-{self.month:02d}')>"
