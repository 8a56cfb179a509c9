"""
Pytest configuration for EkoInk tests.

Every test gets its own SQLite file, a fake generative model and a
Handwrite.io client in test mode, so nothing leaves the process.
"""

from datetime import timedelta
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from ekoink.config import Settings
from ekoink.database import utcnow
from ekoink.main import create_app
from ekoink.models import Account, Call, Deal, Note, NoteStatus, User
from ekoink.providers.handwrite import HandwriteClient
from ekoink.utils.auth import APIKeyManager

COMPLETE_ADDRESS = {
    "line1": "12 Harbor Way",
    "line2": "",
    "city": "Portland",
    "state": "OR",
    "postal_code": "97201",
    "country": "US",
}

STYLE_JSON = (
    '{"tone_description": "Warm and direct", "avg_length": 295, '
    '"sentence_structure": "Short sentences", "common_phrases": ["so glad"], '
    '"opening_style": "Hi first name", "closing_style": "First name only", '
    '"formality": "semi-formal", "enthusiasm_level": "high", '
    '"best_examples": ["Hi Sam, thanks!"], "key_characteristics": ["brief"]}'
)


class FakeLLM:
    """Stands in for LLMClient; replays queued replies in order."""

    available = True

    def __init__(self, replies: Optional[List] = None, default: str = STYLE_JSON):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []

    async def complete(self, system, user, model=None, max_tokens=500, temperature=0.7):
        self.calls.append(
            {"system": system, "user": user, "model": model, "temperature": temperature}
        )
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return self.default


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path}/test.db",
        redis_url="",
        handwriteio_api_key="hw_test_key",
        handwriteio_test_mode=True,
        auth_jwt_secret="test-secret-key",
        log_level="warning",
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def mail(settings):
    return HandwriteClient(settings)


@pytest.fixture
def app(settings, llm, mail):
    return create_app(settings, llm=llm, mail=mail)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(app, client):
    """A session on the app's database; tables exist once the client started."""
    session = app.state.db.session()
    yield session
    session.close()


@pytest.fixture
def account(db):
    account = Account(company_name="Acme Roofing", billing_type="api_invoice", api_monthly_limit=100)
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def user(db, account):
    user = User(account_id=account.id, email="rep@acme.test", name="Jordan Reyes")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def create_key(db, account, user):
    """Create an API key for the test account; returns the plaintext key."""

    def _create(scopes=None, user_id="default", expires_at=None):
        manager = APIKeyManager(db)
        key, _ = manager.create_api_key(
            account_id=account.id,
            user_id=user.id if user_id == "default" else user_id,
            name="Test key",
            scopes=scopes,
            expires_at=expires_at,
        )
        return key

    return _create


@pytest.fixture
def api_headers(create_key):
    return {"Authorization": f"Bearer {create_key(scopes=['*'])}"}


@pytest.fixture
def session_headers(app, user):
    token = app.state.token_verifier.create_token(user.id, user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_note(db, account, user):
    """Create a deal, call and note for the test user."""

    def _make(
        draft_text="Hi Sam, thank you for choosing us for your new roof.",
        status=NoteStatus.DRAFT,
        final_text=None,
        approved_at=None,
        transcript="We talked about the storm damage and Sam's new puppy.",
        address=None,
        owner=None,
    ):
        owner = owner or user
        deal = Deal(
            account_id=owner.account_id,
            user_id=owner.id,
            customer_first_name="Sam",
            customer_last_name="Lee",
            customer_address=dict(address if address is not None else COMPLETE_ADDRESS),
            product_name="Roof replacement",
        )
        db.add(deal)
        db.flush()
        call = Call(deal_id=deal.id, transcript=transcript, transcript_status="complete")
        db.add(call)
        db.flush()
        note = Note(
            deal_id=deal.id,
            user_id=owner.id,
            call_id=call.id,
            draft_text=draft_text,
            final_text=final_text,
            status=status,
            approved_at=approved_at,
        )
        db.add(note)
        db.commit()
        return note

    return _make


@pytest.fixture
def seed_approved_notes(make_note):
    """Create ``count`` approved notes with final text, oldest first."""

    def _seed(count):
        base = utcnow() - timedelta(days=count + 1)
        return [
            make_note(
                draft_text=f"Draft {i}. Thanks for your business.",
                final_text=f"Hi Sam, note number {i}. Thanks so much for trusting us.",
                status=NoteStatus.APPROVED,
                approved_at=base + timedelta(hours=i),
            )
            for i in range(count)
        ]

    return _seed
