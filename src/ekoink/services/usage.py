"""Monthly API usage metering for invoicing and quota checks."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import utcnow
from ..models import Account, ApiUsage
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MonthlyUsage:
    cards_sent: int
    api_calls: int
    amount_owed: int  # cents
    limit: int


@dataclass
class LimitCheck:
    within_limit: bool
    usage: int
    limit: int


class UsageTracker:
    """Reads and increments the per-account monthly usage counters."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.price_per_card_cents = settings.price_per_card_cents
        self.default_monthly_limit = settings.default_monthly_limit

    def _period(self, now: Optional[datetime] = None) -> tuple[int, int]:
        now = now or utcnow()
        return now.year, now.month

    def _get_row(self, account_id: str, year: int, month: int) -> Optional[ApiUsage]:
        return (
            self.db.query(ApiUsage)
            .filter(
                ApiUsage.account_id == account_id,
                ApiUsage.year == year,
                ApiUsage.month == month,
            )
            .first()
        )

    def _account_limit(self, account_id: str) -> int:
        limit = (
            self.db.query(Account.api_monthly_limit)
            .filter(Account.id == account_id)
            .scalar()
        )
        return limit or self.default_monthly_limit

    def track_api_usage(
        self,
        account_id: str,
        cards_sent: int = 0,
        api_calls: int = 1,
        now: Optional[datetime] = None,
    ) -> ApiUsage:
        """Add to the current month's counters, creating the row on first use."""
        year, month = self._period(now)

        for attempt in range(2):
            row = self._get_row(account_id, year, month)
            if row is None:
                row = ApiUsage(
                    account_id=account_id,
                    year=year,
                    month=month,
                    cards_sent=0,
                    api_calls_count=0,
                    amount_owed_cents=0,
                )
                self.db.add(row)

            row.cards_sent += cards_sent
            row.api_calls_count += api_calls
            row.amount_owed_cents = row.cards_sent * self.price_per_card_cents

            try:
                self.db.commit()
            except IntegrityError:
                # Another request created this month's row first
                self.db.rollback()
                if attempt:
                    raise
                continue

            logger.info(
                "usage_tracked",
                account_id=account_id,
                period=f"{year}-{month:02d}",
                cards_sent=row.cards_sent,
                api_calls=row.api_calls_count,
            )
            return row

    def get_current_month_usage(self, account_id: str, now: Optional[datetime] = None) -> MonthlyUsage:
        year, month = self._period(now)
        row = self._get_row(account_id, year, month)

        return MonthlyUsage(
            cards_sent=row.cards_sent if row else 0,
            api_calls=row.api_calls_count if row else 0,
            amount_owed=row.amount_owed_cents if row else 0,
            limit=self._account_limit(account_id),
        )

    def get_usage_history(self, account_id: str, limit: int = 12) -> List[ApiUsage]:
        """Monthly rows for an account, newest month first."""
        return (
            self.db.query(ApiUsage)
            .filter(ApiUsage.account_id == account_id)
            .order_by(ApiUsage.year.desc(), ApiUsage.month.desc())
            .limit(limit)
            .all()
        )

    def check_monthly_limit(self, account_id: str, now: Optional[datetime] = None) -> LimitCheck:
        usage = self.get_current_month_usage(account_id, now)
        return LimitCheck(
            within_limit=usage.cards_sent < usage.limit,
            usage=usage.cards_sent,
            limit=usage.limit,
        )

    def has_exceeded_limit(self, account_id: str) -> bool:
        return not self.check_monthly_limit(account_id).within_limit
