"""Usage statistics API routes for monthly billing."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..errors import api_success
from ..schemas import ApiContext
from ..services.usage import UsageTracker
from .dependencies import get_settings, require_api_key

router = APIRouter(prefix="/api/v1/account", tags=["Account"])


def _usd(cents: int) -> str:
    return f"{cents / 100:.2f}"


@router.get("/usage")
async def get_usage(
    history_limit: int = Query(12, ge=1),
    context: ApiContext = Depends(require_api_key("account:read")),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Get the current month's usage, recent history and billing info."""
    tracker = UsageTracker(db, settings)
    current = tracker.get_current_month_usage(context.account_id)
    history = tracker.get_usage_history(context.account_id, min(history_limit, 24))

    return api_success(
        {
            "current_month": {
                "cards_sent": current.cards_sent,
                "api_calls": current.api_calls,
                "amount_owed_cents": current.amount_owed,
                "amount_owed_usd": _usd(current.amount_owed),
                "monthly_limit": current.limit,
                "remaining": max(0, current.limit - current.cards_sent),
            },
            "history": [
                {
                    "year": month.year,
                    "month": month.month,
                    "cards_sent": month.cards_sent,
                    "amount_owed_cents": month.amount_owed_cents,
                    "amount_owed_usd": _usd(month.amount_owed_cents),
                    "invoice_status": month.invoice_status,
                    "invoice_paid_at": month.invoice_paid_at,
                }
                for month in history
            ],
            "billing_info": {
                "billing_type": context.account.billing_type,
                "price_per_card_cents": settings.price_per_card_cents,
                "price_per_card_usd": _usd(settings.price_per_card_cents),
            },
        }
    )
