"""
Tests for monthly usage metering.
"""

from datetime import datetime, timezone

import pytest

from ekoink.models import ApiUsage
from ekoink.services.usage import UsageTracker

MARCH = datetime(2025, 3, 10, tzinfo=timezone.utc)
APRIL = datetime(2025, 4, 2, tzinfo=timezone.utc)


@pytest.fixture
def tracker(db, settings):
    return UsageTracker(db, settings)


class TestUsageTracker:
    def test_first_use_creates_month_row(self, tracker, db, account):
        row = tracker.track_api_usage(account.id, now=MARCH)

        assert (row.year, row.month) == (2025, 3)
        assert row.api_calls_count == 1
        assert row.cards_sent == 0
        assert row.amount_owed_cents == 0
        assert row.invoice_status == "pending"

    def test_counters_accumulate_and_price_cards(self, tracker, db, account):
        tracker.track_api_usage(account.id, now=MARCH)
        tracker.track_api_usage(account.id, cards_sent=1, now=MARCH)
        tracker.track_api_usage(account.id, cards_sent=2, api_calls=0, now=MARCH)

        usage = tracker.get_current_month_usage(account.id, now=MARCH)
        assert usage.cards_sent == 3
        assert usage.api_calls == 2
        assert usage.amount_owed == 3000
        assert db.query(ApiUsage).count() == 1

    def test_months_are_separate(self, tracker, db, account):
        tracker.track_api_usage(account.id, cards_sent=5, now=MARCH)
        tracker.track_api_usage(account.id, cards_sent=1, now=APRIL)

        history = tracker.get_usage_history(account.id)

        assert [(row.year, row.month, row.cards_sent) for row in history] == [
            (2025, 4, 1),
            (2025, 3, 5),
        ]
        assert len(tracker.get_usage_history(account.id, limit=1)) == 1

    def test_no_usage_reads_as_zero(self, tracker, account):
        usage = tracker.get_current_month_usage(account.id, now=MARCH)
        assert (usage.cards_sent, usage.api_calls, usage.amount_owed) == (0, 0, 0)
        assert usage.limit == 100

    def test_limit_is_strictly_below(self, tracker, db, account):
        account.api_monthly_limit = 2
        db.commit()

        tracker.track_api_usage(account.id, cards_sent=1, now=MARCH)
        assert tracker.check_monthly_limit(account.id, now=MARCH).within_limit is True

        tracker.track_api_usage(account.id, cards_sent=1, now=MARCH)
        check = tracker.check_monthly_limit(account.id, now=MARCH)
        assert check.within_limit is False
        assert (check.usage, check.limit) == (2, 2)

    def test_price_comes_from_settings(self, db, account, settings):
        settings.price_per_card_cents = 250
        row = UsageTracker(db, settings).track_api_usage(account.id, cards_sent=4, now=MARCH)
        assert row.amount_owed_cents == 1000


class TestUsageRoute:
    def test_reports_current_month_and_billing(self, client, db, account, api_headers, settings):
        UsageTracker(db, settings).track_api_usage(account.id, cards_sent=3)

        response = client.get("/api/v1/account/usage", headers=api_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["current_month"] == {
            "cards_sent": 3,
            "api_calls": 1,
            "amount_owed_cents": 3000,
            "amount_owed_usd": "30.00",
            "monthly_limit": 100,
            "remaining": 97,
        }
        assert data["history"][0]["invoice_status"] == "pending"
        assert data["billing_info"] == {
            "billing_type": "api_invoice",
            "price_per_card_cents": 1000,
            "price_per_card_usd": "10.00",
        }
